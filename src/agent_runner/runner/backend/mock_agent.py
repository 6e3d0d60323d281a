"""Local stand-in for the agent CLI speaking the stream-json protocol."""

from __future__ import annotations

import argparse
import json
import sys
import time


def main(argv: list[str] | None = None) -> int:
    """Emit a deterministic init/assistant/result turn on stdout."""

    parser = argparse.ArgumentParser()
    parser.add_argument("-p", "--print", dest="prompt", required=True)
    parser.add_argument("--output-format", default="stream-json")
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--resume", default=None)
    parser.add_argument("--delay", type=float, default=0.1)
    args, _ = parser.parse_known_args(argv)

    session_id = args.resume or f"mock-session-{int(time.time() * 1000)}"
    events = [
        {"type": "system", "subtype": "init", "session_id": session_id, "cwd": "/mock/project"},
        {
            "type": "assistant",
            "message": {
                "content": [
                    {
                        "type": "text",
                        "text": f"Hello! This is a mock reply, session id {session_id}.",
                    },
                ],
            },
        },
        {"type": "result", "subtype": "success", "session_id": session_id},
    ]
    for event in events:
        sys.stdout.write(json.dumps(event) + "\n")
        sys.stdout.flush()
        time.sleep(args.delay)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

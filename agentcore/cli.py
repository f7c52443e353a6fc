import argparse
import sys

import uvicorn

from agentcore.config import HOST, LOG_LEVEL, PORT, validate_config


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the agent orchestration core HTTP/WebSocket server")
    parser.add_argument("--host", default=HOST, help="Bind host")
    parser.add_argument("--port", type=int, default=PORT, help="Bind port")
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development",
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Validate the environment and exit",
    )
    args = parser.parse_args()

    if args.check_config:
        problems = validate_config()
        for problem in problems:
            print(f"config error: {problem}", file=sys.stderr)
        sys.exit(1 if problems else 0)

    uvicorn.run(
        "agentcore.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=LOG_LEVEL.lower(),
        timeout_graceful_shutdown=3,
    )


if __name__ == "__main__":
    main()

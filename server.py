"""Tool call controller server entry point."""

import os

import uvicorn
from dotenv import load_dotenv

# Load environment variables before settings are read on import
load_dotenv()

if __name__ == "__main__":
    # Use 0.0.0.0 only when capability servers or approval providers call back from other hosts
    host = os.getenv("API_HOST", "127.0.0.1")
    port = int(os.getenv("API_PORT", 8000))
    debug = os.getenv("DEBUG", "false").lower() == "true"

    print(f"Starting tool call controller on {host}:{port}")
    print(f"Approval callbacks are accepted at: http://{host}:{port}/api/v1/approvals/callback")
    # Import string keeps reload working
    uvicorn.run("tool_controller.main:app", host=host, port=port, reload=debug)

#!/usr/bin/env python3
"""
Development server runner for the study room AI chat API.

Starts the FastAPI development server with hot reloading after loading
variables from the project's .env file.
"""

import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
src_path = project_root / "src"
sys.path.insert(0, str(src_path))

from dotenv import load_dotenv

env_file = project_root / ".env"
if env_file.exists():
    load_dotenv(env_file)
    print(f"✓ Loaded environment variables from {env_file}")
else:
    print(f"⚠ No .env file found at {env_file}")
    print("  Without API keys the service answers with deterministic statements only")

if __name__ == "__main__":
    import uvicorn
    from studyroom_ai.config import get_settings

    settings = get_settings()
    server_config = settings.server
    chat_config = settings.ai_chat

    print("🚀 Starting AI chat development server...")
    print(f"📊 API Documentation: http://{server_config.host}:{server_config.port}/docs")
    print(f"🔍 Health Check: http://{server_config.host}:{server_config.port}/health")
    print(
        f"🤖 Providers: external={chat_config.use_external_api} "
        f"local={chat_config.use_local_llm} demo={chat_config.demo_mode}"
    )
    print()

    uvicorn.run(
        server_config.app_module,
        host=server_config.host,
        port=server_config.port,
        reload=server_config.reload,
        workers=server_config.workers,
        reload_dirs=[str(src_path)],
        log_config=None,
        access_log=False
    )

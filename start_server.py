#!/usr/bin/env python3
"""
Startup script for the One-Page Resume pipeline

Checks the external tools and API key availability, then starts the web API.
"""

import shutil
import subprocess
import sys
from pathlib import Path

import requests

import config

POPPLER_TOOLS = ['pdfinfo', 'pdftoppm', 'pdftotext']


def check_tool(name: str, version_flag: str = '--version') -> bool:
    if shutil.which(name) is None:
        return False
    try:
        subprocess.run([name, version_flag], capture_output=True, text=True, timeout=10)
        return True
    except (OSError, subprocess.TimeoutExpired):
        return False


def check_dependencies():
    """Check if all required dependencies are available."""
    print("🔍 Checking dependencies...")

    if sys.version_info < (3, 9):
        print("❌ Python 3.9+ required")
        return False

    ok = True

    if check_tool(config.LATEX_ENGINE):
        print(f"✅ LaTeX engine found: {config.LATEX_ENGINE}")
    else:
        print(f"❌ {config.LATEX_ENGINE} not found - PDF generation will fail")
        ok = False

    for tool in POPPLER_TOOLS:
        if check_tool(tool, '-v'):
            print(f"✅ {tool} found")
        else:
            print(f"❌ {tool} not found - install poppler-utils")
            ok = False

    found = config.detect_env_api_key()
    if found['provider']:
        print(f"✅ {found['provider']} API key found in environment")
    else:
        print("⚠️  No GOOGLE_API_KEY / OPENAI_API_KEY in environment - clients must send a key")

    try:
        response = requests.get(f"{config.LLM_CONFIG['lmstudio_base_url']}/models", timeout=5)
        if response.status_code == 200:
            print("✅ LM Studio API accessible")
        else:
            print("⚠️  LM Studio API not responding correctly")
    except requests.RequestException:
        print("⚠️  LM Studio not running - the lmstudio provider will be unavailable")

    print("✅ Dependency check completed")
    return ok


def create_directories():
    """Create necessary directories if they don't exist."""
    print("📁 Creating directories...")

    for directory in [config.PDF_OUTPUT_DIR, config.LOGS_DIR]:
        Path(directory).mkdir(parents=True, exist_ok=True)
        print(f"✅ Created directory: {directory}")


def main():
    """Main startup function."""
    print("🚀 Starting One-Page Resume API")
    print("=" * 50)

    if not check_dependencies():
        print("\n❌ Dependency check failed. Please fix the issues above.")
        sys.exit(1)

    create_directories()

    print("\n🎯 Starting web API...")
    print("📱 Listening on http://localhost:8081")
    print("🛑 Press Ctrl+C to stop the server")
    print("=" * 50)

    try:
        from app import app
        app.run(host='0.0.0.0', port=8081, debug=False, threaded=True)
    except KeyboardInterrupt:
        print("\n👋 Server stopped by user")
    except Exception as e:
        print(f"\n❌ Failed to start server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

"""Health check script for all environments"""
import asyncio
import sys
from pathlib import Path

import httpx

sys.path.append(str(Path(__file__).parent.parent))

from app.core.config import get_settings


async def check_health():
    settings = get_settings()
    env = settings.ENVIRONMENT.value

    urls = {
        "local": "http://localhost:8001/health",
        "dev": "http://localhost:8000/health",
        "staging": "https://staging.yourapp.com/health",
        "prod": "https://api.yourapp.com/health",
    }

    url = urls.get(env)
    if not url:
        print(f"Unknown environment: {env}")
        return False

    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(url)
            data = response.json()

            print(f"Environment: {env}")
            print(f"Status: {data['status']}")
            print("Services:")
            for service, status in data["services"].items():
                emoji = "✅" if status else "❌"
                print(f"  {emoji} {service}: {status}")
            connections = data.get("connections") or {}
            print(f"Realtime: {connections.get('total_connections', 0)} sockets in {connections.get('active_rooms', 0)} rooms")

            return data["status"] == "healthy"

    except httpx.HTTPError as e:
        print(f"❌ Health check failed: {e}")
        return False


if __name__ == "__main__":
    ok = asyncio.run(check_health())
    sys.exit(0 if ok else 1)

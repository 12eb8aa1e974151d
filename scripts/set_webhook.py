"""
Register the relay's webhook URL with Telegram.

Usage:
    python scripts/set_webhook.py https://relay.example.com [--drop-pending]

The bot token is read from TELEGRAM_BOT_TOKEN (or .env).
"""
import sys
import os
import argparse
import asyncio

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import httpx

from drivebot.services.telegram_client import TelegramClient


async def set_webhook(base_url: str, drop_pending: bool) -> bool:
    url = f"{base_url.rstrip('/')}/telegram/webhook"
    async with httpx.AsyncClient(timeout=30.0) as client:
        telegram = TelegramClient(client)
        result = await telegram.set_webhook(url, drop_pending_updates=drop_pending)
    if result.get("ok"):
        print(f"Webhook set to {url}")
        return True
    print(f"Failed to set webhook: {result.get('description')}")
    return False


def main():
    parser = argparse.ArgumentParser(description="Point the Telegram bot at this relay")
    parser.add_argument("base_url", help="Public base URL of the deployed relay")
    parser.add_argument("--drop-pending", action="store_true", help="Discard updates queued while no webhook was set")
    args = parser.parse_args()

    ok = asyncio.run(set_webhook(args.base_url, args.drop_pending))
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()

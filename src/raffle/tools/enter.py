#!/usr/bin/env python3
"""Enter the raffle through the HTTP API.

Usage: raffle-enter [--api-url http://localhost:6080] [--player 0x...] [--amount-wei N]

Without --amount-wei the entry pays the current entrance fee plus one wei.
Without --player a fresh address is generated.
"""

import argparse
import sys
from typing import Optional

import requests
from eth_account import Account
from web3 import Web3

DEFAULT_API_URL = "http://localhost:6080"


def fetch_status(api_url: str, timeout: float = 10) -> dict:
    response = requests.get(f"{api_url}/api/raffle/status", timeout=timeout)
    response.raise_for_status()
    return response.json()


def enter_raffle(api_url: str, player: str, amount_wei: Optional[int] = None, timeout: float = 10) -> dict:
    if amount_wei is None:
        amount_wei = int(fetch_status(api_url, timeout)["entranceFeeWei"]) + 1
    response = requests.post(
        f"{api_url}/api/raffle/enter",
        json={"player": player, "amount_wei": amount_wei},
        timeout=timeout,
    )
    if response.status_code != 200:
        detail = response.json().get("detail", response.text)
        raise RuntimeError(f"Entry rejected ({response.status_code}): {detail}")
    result = response.json()
    result["amount_wei"] = amount_wei
    return result


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Enter the raffle with the entrance fee")
    parser.add_argument('--api-url', default=DEFAULT_API_URL, help='Raffle API base URL')
    parser.add_argument('--player', help='Entrant address (a new one is generated if omitted)')
    parser.add_argument('--amount-wei', type=int, help='Amount to pay in wei (default: entrance fee + 1)')
    args = parser.parse_args(argv)

    player = args.player or Account.create().address
    if not Web3.is_address(player):
        print(f"ERROR: invalid address {player}", file=sys.stderr)
        return 1

    try:
        result = enter_raffle(args.api_url.rstrip('/'), player, args.amount_wei)
    except (requests.RequestException, RuntimeError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print(f"Player: {player}")
    print(f"Paid: {Web3.from_wei(result['amount_wei'], 'ether')} ETH")
    print(f"Entered round {result['round_id']} ({result['player_count']} players)")
    return 0


if __name__ == "__main__":
    sys.exit(main())

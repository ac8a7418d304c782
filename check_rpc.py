import argparse
import logging
import os
import sys
import time

from dotenv import load_dotenv

from fixed_point import hex_to_int
from rpc_client import RetryPolicy, RetryingRpcClient
from rpc_errors import RpcError
from tatum_config import DEFAULT_CHAIN, GATEWAY_CHAINS, gateway_url


def check_chain(client: RetryingRpcClient):
    try:
        t0 = time.monotonic()
        chain_id = hex_to_int(client.call("eth_chainId"))
        block = hex_to_int(client.call("eth_blockNumber"))
        dt = time.monotonic() - t0
        return True, dt, {"chain_id": chain_id, "block": block}
    except RpcError as e:
        return False, 0, str(e)


def main() -> None:
    load_dotenv()
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    parser = argparse.ArgumentParser(description="Check Tatum gateway chains.")
    parser.add_argument("--chains", default=os.getenv("TATUM_CHAIN", DEFAULT_CHAIN), help="Comma-separated chains.")
    parser.add_argument("--all", action="store_true", help="Check every known gateway chain.")
    parser.add_argument("--max-attempts", type=int, default=2)
    parser.add_argument("--timeout", type=float, default=5.0)
    args = parser.parse_args()

    api_key = os.getenv("TATUM_API_KEY", "")
    if not api_key:
        print("TATUM_API_KEY required", file=sys.stderr)
        sys.exit(1)

    chains = list(GATEWAY_CHAINS.values()) if args.all else [c.strip() for c in args.chains.split(",") if c.strip()]
    policy = RetryPolicy(max_attempts=args.max_attempts)

    print("Checking gateways...")
    passed = 0
    for chain in chains:
        url = gateway_url(chain)
        with RetryingRpcClient(url, api_key=api_key, policy=policy, timeout=args.timeout) as client:
            success, dt, res = check_chain(client)
        if success:
            print(f"PASS: {url} chain={res['chain_id']} block={res['block']} ({dt:.2f}s)")
            passed += 1
        else:
            print(f"FAIL: {url} ({res})")

    if not passed:
        print("ALL GATEWAYS FAILED!")
        sys.exit(1)
    print(f"Found {passed} working gateways.")


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Command-line tasks for interacting with a running registry API.

Usage:
    copyright-cli --caller 0x... register-author --author-id 123456
    copyright-cli --caller 0x... register-work --hash 42 --title "My Work" --category "Art"
    copyright-cli get-stats --address 0x...
    copyright-cli get-work --id 1
    copyright-cli --caller 0x... file-dispute --work-id 1 --hash 42
    copyright-cli --caller 0x... verify-work --work-id 1
    copyright-cli get-disputes --work-id 1
    copyright-cli --caller 0x... resolve-dispute --work-id 1 --index 0
    copyright-cli info
"""

import argparse
import os
import sys
from datetime import datetime
from typing import List, Optional

import requests
from dotenv import load_dotenv

from copyright_registry.client import RegistryClient, RegistryClientError


def register_author(client: RegistryClient, args) -> int:
    print(f"Registering author with ID: {args.author_id}")
    print(f"Caller address: {client.caller}")

    if client.is_registered_author(client.caller):
        print("❌ Already registered as author")
        return 1

    client.register_author(args.author_id)
    print("✅ Author registered successfully!")
    return 0


def register_work(client: RegistryClient, args) -> int:
    print(f'Registering work: "{args.title}"')
    print(f"Category: {args.category}")
    print(f"Content hash: {args.hash}")

    if not client.is_registered_author(client.caller):
        print("❌ You must register as an author first")
        print("   Run: copyright-cli register-author --author-id <id>")
        return 1

    work_id = client.register_work(args.hash, args.title, args.category)
    print("✅ Work registered successfully!")
    print(f"   Work ID: {work_id}")
    return 0


def get_stats(client: RegistryClient, args) -> int:
    stats = client.get_author_stats(args.address)

    print(f"\nAuthor Statistics for {args.address}:")
    print(f"  Registered: {stats['registered']}")
    print(f"  Works Count: {stats['work_count']}")
    print(f"  Total Disputes: {stats['total_disputes']}")
    print(f"  Won Disputes: {stats['won_disputes']}")

    if stats["registered"]:
        print("\n  Registered Work IDs:")
        for index, work_id in enumerate(client.get_author_works(args.address), start=1):
            print(f"    {index}. Work #{work_id}")
    return 0


def get_work(client: RegistryClient, args) -> int:
    info = client.get_work_info(args.id)

    print(f"\nWork #{args.id} Information:")
    print(f"  Title: {info['title']}")
    print(f"  Category: {info['category']}")
    print(f"  Registrant: {info['registrant']}")
    print(f"  Timestamp: {datetime.fromtimestamp(info['timestamp']).isoformat(sep=' ')}")
    print(f"  Verified: {info['verified']}")
    print(f"  Disputed: {info['disputed']}")
    print(f"  Dispute Count: {info['dispute_count']}")
    return 0


def file_dispute(client: RegistryClient, args) -> int:
    print(f"Filing dispute for work #{args.work_id}")
    print(f"Challenger hash: {args.hash}")

    if not client.is_registered_author(client.caller):
        print("❌ You must register as an author first")
        return 1

    info = client.get_work_info(args.work_id)
    if info["registrant"].lower() == client.caller.lower():
        print("❌ Cannot dispute your own work")
        return 1

    dispute_index = client.file_dispute(args.work_id, args.hash)
    print("✅ Dispute filed successfully!")
    print(f"   Dispute ID: {dispute_index}")
    return 0


def verify_work(client: RegistryClient, args) -> int:
    print(f"Verifying work #{args.work_id}")

    work = client.mark_work_as_verified(args.work_id)
    print("✅ Work verified!")
    print(f"   Title: {work['title']}")
    return 0


def print_dispute(dispute) -> None:
    print(f"\n  Dispute #{dispute['dispute_index']}:")
    print(f"    Challenger: {dispute['challenger']}")
    print(f"    Filed: {datetime.fromtimestamp(dispute['timestamp']).isoformat(sep=' ')}")
    print(f"    Resolved: {dispute['resolved']}")
    print(f"    Pending: {dispute['pending']}")
    if dispute["resolved"]:
        print(f"    Winner: {dispute['winner'] or 'none'}")


def get_disputes(client: RegistryClient, args) -> int:
    if args.index is not None:
        print_dispute(client.get_dispute_info(args.work_id, args.index))
        return 0

    count = client.get_dispute_count(args.work_id)
    print(f"\nWork #{args.work_id} has {count} dispute(s)")
    for index in range(count):
        print_dispute(client.get_dispute_info(args.work_id, index))
    return 0


def resolve_dispute(client: RegistryClient, args) -> int:
    print(f"Requesting resolution of dispute #{args.index} on work #{args.work_id}")

    request_id = client.resolve_dispute(args.work_id, args.index)
    print("✅ Resolution requested!")
    print(f"   Decryption request: {request_id}")
    print("   The result is applied when the gateway delivers it")
    return 0


def info(client: RegistryClient, args) -> int:
    data = client.info()

    print("\nAnonymous Copyright Registry Information:")
    print(f"  API: {client.base_url}")
    print(f"  Registry Address: {data['address']}")
    print(f"  Owner: {data['owner']}")
    print(f"  Total Works: {data['total_works']}")
    print(f"  Pending Resolutions: {data['pending_resolutions']}")
    print(f"  FHE Backend: {data['fhe_backend']}")
    return 0


COMMANDS_REQUIRING_CALLER = {"register-author", "register-work", "file-dispute", "verify-work", "resolve-dispute"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="copyright-cli", description="Anonymous Copyright Registry tasks")
    parser.add_argument("--api-url", default=os.getenv("REGISTRY_API_URL", "http://localhost:8000"),
                        help="Registry API base URL")
    parser.add_argument("--caller", default=os.getenv("REGISTRY_CALLER"),
                        help="Address acting as caller")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p = subparsers.add_parser("register-author", help="Register as an anonymous author")
    p.add_argument("--author-id", type=int, required=True, help="Numeric author identifier (will be encrypted)")
    p.set_defaults(handler=register_author)

    p = subparsers.add_parser("register-work", help="Register a copyrighted work")
    p.add_argument("--hash", type=int, required=True, help="Content hash (uint32)")
    p.add_argument("--title", required=True, help="Work title")
    p.add_argument("--category", required=True, help="Work category (Literature, Music, Art, etc.)")
    p.set_defaults(handler=register_work)

    p = subparsers.add_parser("get-stats", help="Get author statistics")
    p.add_argument("--address", required=True, help="Author address")
    p.set_defaults(handler=get_stats)

    p = subparsers.add_parser("get-work", help="Get work information")
    p.add_argument("--id", type=int, required=True, help="Work ID")
    p.set_defaults(handler=get_work)

    p = subparsers.add_parser("file-dispute", help="File a dispute against a work")
    p.add_argument("--work-id", type=int, required=True, help="Work ID to dispute")
    p.add_argument("--hash", type=int, required=True, help="Your content hash (uint32)")
    p.set_defaults(handler=file_dispute)

    p = subparsers.add_parser("verify-work", help="Mark a work as verified (registry owner only)")
    p.add_argument("--work-id", type=int, required=True, help="Work ID to verify")
    p.set_defaults(handler=verify_work)

    p = subparsers.add_parser("get-disputes", help="Show the disputes filed against a work")
    p.add_argument("--work-id", type=int, required=True, help="Disputed work ID")
    p.add_argument("--index", type=int, help="Only show this dispute")
    p.set_defaults(handler=get_disputes)

    p = subparsers.add_parser("resolve-dispute", help="Request resolution of a dispute (registry owner only)")
    p.add_argument("--work-id", type=int, required=True, help="Disputed work ID")
    p.add_argument("--index", type=int, required=True, help="Dispute index")
    p.set_defaults(handler=resolve_dispute)

    p = subparsers.add_parser("info", help="Get registry information")
    p.set_defaults(handler=info)

    return parser


def main(argv: Optional[List[str]] = None, session=None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command in COMMANDS_REQUIRING_CALLER and not args.caller:
        parser.error(f"{args.command} requires --caller or REGISTRY_CALLER")

    client = RegistryClient(args.api_url, caller=args.caller, session=session)
    try:
        return args.handler(client, args)
    except RegistryClientError as e:
        print(f"❌ {e.code}: {e.message}")
        return 1
    except requests.RequestException as e:
        print(f"❌ Cannot reach registry API at {client.base_url}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

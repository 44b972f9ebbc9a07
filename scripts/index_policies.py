#!/usr/bin/env python3
"""
CLI script for ingesting insurance policy documents for RAG.

Usage:
    # Ingest one uploaded document
    python scripts/index_policies.py --document-id 7c0e...

    # Rebuild the index of every document of a plan
    python scripts/index_policies.py --plan-id 1f3a...

    # Show index statistics (optionally for one plan)
    python scripts/index_policies.py --stats [--plan-id 1f3a...]
"""

import asyncio
import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from policyrag.bootstrap import build_services
from policyrag.errors import Err


async def main():
    parser = argparse.ArgumentParser(
        description="Ingest insurance policy documents for RAG search",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --document-id <id>        # Ingest one document
  %(prog)s --plan-id <id>            # Reprocess all documents of a plan
  %(prog)s --stats                   # Show index statistics
        """,
    )

    parser.add_argument(
        "--document-id",
        help="Ingest a single uploaded policy document",
    )

    parser.add_argument(
        "--plan-id",
        help="Reprocess every document of a plan (or scope --stats to it)",
    )

    parser.add_argument(
        "--skip-summary",
        action="store_true",
        help="Do not regenerate the plan summary after ingestion",
    )

    parser.add_argument(
        "--stats",
        action="store_true",
        help="Show index statistics instead of indexing",
    )

    args = parser.parse_args()

    if not (args.stats or args.document_id or args.plan_id):
        parser.error("one of --document-id, --plan-id or --stats is required")

    services = await build_services()

    try:
        if args.stats:
            print("\n📊 Index Statistics")
            print("=" * 40)

            stats = await services.indexer.get_index_stats(args.plan_id)
            for name, value in stats.items():
                print(f"{name.replace('_', ' ').capitalize()}: {value}")
            return 0

        if args.document_id:
            result = await services.indexer.ingest_document(args.document_id)
            if isinstance(result, Err):
                print(f"\n❌ Ingestion failed: {result}")
                return 1
            report = result.value
            plan_id = report.plan_id
            print(f"\n✅ Ingested document {report.document_id}")
            print(f"   Chunks: {report.chunks_created} in {report.batches} batches")
            print(f"   Time: {report.total_time_seconds}s")
        else:
            plan_id = args.plan_id
            result = await services.indexer.reingest_plan(plan_id)
            if isinstance(result, Err):
                print(f"\n❌ Reprocessing failed: {result}")
                return 1
            print(f"\n✅ Reprocessed {len(result.value)} documents")
            for report in result.value:
                print(f"   {report.document_id}: {report.chunks_created} chunks")

        if not args.skip_summary:
            summary = await services.rag.generate_plan_summary(plan_id)
            if isinstance(summary, Err):
                print(f"\n⚠️  Plan summary not generated: {summary}")
            else:
                print(f"\n📝 Summary: {summary.value.summary}")
                for reason in summary.value.top_reasons:
                    print(f"   - {reason}")
        return 0

    except KeyboardInterrupt:
        print("\n\n[!] Indexing cancelled by user")
        return 130

    finally:
        await services.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))

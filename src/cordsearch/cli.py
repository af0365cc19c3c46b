"""
CordSearch CLI — Command-Line Interface
=======================================

Command-line interface for cordsearch operations.

Usage:
    cordsearch cluster health
    cordsearch cluster indices
    cordsearch create web --shards 1
    cordsearch count web "quantum"
    cordsearch search web "quantum -classical" --sort date:desc --facet year
    cordsearch search web "quantum" --json
    cordsearch delete web -f
    cordsearch delete-by-query web "status:obsolete" -f
    cordsearch table users tier:gold --store /data --base-path tables
"""

import argparse
import json
import logging
import sys
import time
from typing import List, Optional

from .config import IndexConfig


def get_config(args) -> IndexConfig:
    """Configuration from the environment, overridden by command-line options."""
    config = IndexConfig.from_env()
    if args.hosts:
        config.addresses = args.hosts.split(",")
    if args.api_key:
        config.api_key = args.api_key
    return config


def cmd_cluster_health(args):
    """Show cluster health."""
    from .cluster import ClusterManager

    manager = ClusterManager(get_config(args))

    health = manager.health()
    print(f"\nCluster: {health['cluster_name']}")
    print(f"Status: {health['status']}")
    print(f"Nodes: {health['number_of_nodes']}")
    print(f"Data nodes: {health['number_of_data_nodes']}")
    print(f"Active shards: {health['active_shards']}")
    print(f"Unassigned shards: {health['unassigned_shards']}")

    manager.close()


def cmd_cluster_indices(args):
    """List all indices."""
    from .cluster import ClusterManager

    manager = ClusterManager(get_config(args))

    indices = manager.indices()

    print(f"\n{'Index':<30} {'Health':<8} {'Docs':>12} {'Size':>10}")
    print("-" * 65)

    for idx in indices:
        print(
            f"{idx['name']:<30} "
            f"{idx['health']:<8} "
            f"{idx['docs_count']:>12,} "
            f"{idx['size']:>10}"
        )

    manager.close()


def cmd_create(args):
    """Create an index unless it exists."""
    from .core import IndexClient

    client = IndexClient.connect(get_config(args))

    if client.create_index_if_not_exists(args.index, shards=args.shards, replicas=args.replicas):
        print(f"Created index: {args.index}")
        print(f"  Shards: {args.shards}")
        print(f"  Replicas: {args.replicas}")
    else:
        print(f"Index exists: {args.index}")

    client.close()


def cmd_count(args):
    """Count matching documents."""
    from .core import IndexClient

    client = IndexClient.connect(get_config(args))
    print(client.count(args.index, args.query))
    client.close()


def cmd_search(args):
    """Search an index."""
    from .core import IndexClient
    from .query import Sort

    client = IndexClient.connect(get_config(args))

    start = time.time()
    result = client.query(
        args.index,
        args.query,
        sort=Sort.parse(args.sort) if args.sort else None,
        highlight_field=args.highlight,
        from_=args.start,
        size=args.limit,
        aggregation_fields=args.facet or ()
    )
    elapsed_ms = (time.time() - start) * 1000

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        client.close()
        return

    print(f"\nQuery: {args.query}")
    print(f"Results: {len(result.results)} of {result.hit_count} (in {elapsed_ms:.1f}ms)\n")

    for doc, highlight in zip(result.results, result.highlights):
        title = str(doc.get("title", ""))
        title = title[:70] + "..." if len(title) > 70 else title
        print(f"{doc['id']}  {title}")
        for fragment in highlight.get(args.highlight, []) if args.highlight else []:
            print(f"  ... {fragment} ...")

    for field, buckets in result.aggregations.items():
        print(f"\n{field}:")
        for label, count in buckets:
            print(f"  {label}: {count:,}")

    client.close()


def cmd_delete(args):
    """Delete an index."""
    from .core import IndexClient

    if not args.force:
        confirm = input(f"Delete index '{args.index}'? [y/N] ")
        if confirm.lower() != 'y':
            print("Aborted.")
            return

    client = IndexClient.connect(get_config(args))
    client.delete_index(args.index)
    print(f"Deleted index: {args.index}")
    client.close()


def cmd_delete_by_query(args):
    """Delete all documents matching a query."""
    from .core import IndexClient

    if not args.force:
        confirm = input(f"Delete all documents in '{args.index}' matching '{args.query}'? [y/N] ")
        if confirm.lower() != 'y':
            print("Aborted.")
            return

    client = IndexClient.connect(get_config(args))
    deleted = client.delete_by_query(args.index, args.query)
    print(f"Deleted {deleted:,} documents from {args.index}")
    client.close()


def cmd_table(args):
    """Resolve a table and print it as JSON."""
    from .store import FileStore
    from .tables import PersistentTables

    config = IndexConfig.from_env()
    tables = PersistentTables(peer_timeout=config.table_peer_timeout)

    peer = args.peer or config.table_peer_url
    if peer:
        tables.connect(peer)
    store_path = args.store or config.store_path
    if store_path:
        tables.connect_store(FileStore(store_path), args.base_path)

    table = tables.where(args.name, *args.selects)
    if args.limit:
        table = tables.head(table, args.limit)
    print(table.to_json(indent=2))


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="cordsearch",
        description="cordsearch — resilient Elasticsearch access, cords and tables"
    )

    # Global options
    parser.add_argument(
        "--hosts",
        help="Elasticsearch addresses (comma-separated host:port)",
        default=None
    )
    parser.add_argument(
        "--api-key",
        dest="api_key",
        help="Elasticsearch API key",
        default=None
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # cluster command
    cluster_parser = subparsers.add_parser("cluster", help="Cluster operations")
    cluster_sub = cluster_parser.add_subparsers(dest="cluster_cmd")

    cluster_sub.add_parser("health", help="Show cluster health")
    cluster_sub.add_parser("indices", help="List all indices")

    # create command
    create_parser = subparsers.add_parser("create", help="Create an index")
    create_parser.add_argument("index", help="Index name")
    create_parser.add_argument("--shards", type=int, default=1, help="Primary shards")
    create_parser.add_argument("--replicas", type=int, default=0, help="Replica shards")

    # count command
    count_parser = subparsers.add_parser("count", help="Count matching documents")
    count_parser.add_argument("index", help="Index name")
    count_parser.add_argument("query", nargs="?", default=None, help="Search query (default: all)")

    # search command
    search_parser = subparsers.add_parser("search", help="Search an index")
    search_parser.add_argument("index", help="Index name")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument("--limit", type=int, default=20, help="Max results")
    search_parser.add_argument("--start", type=int, default=0, help="Offset of the first result")
    search_parser.add_argument("--sort", help="Sort, e.g. date:desc,title")
    search_parser.add_argument("--highlight", help="Field to highlight")
    search_parser.add_argument("--facet", action="append", help="Field to aggregate on (repeatable)")
    search_parser.add_argument("--json", action="store_true", help="Print the result as JSON")

    # delete command
    delete_parser = subparsers.add_parser("delete", help="Delete an index")
    delete_parser.add_argument("index", help="Index name")
    delete_parser.add_argument("-f", "--force", action="store_true", help="Skip confirmation")

    # delete-by-query command
    dbq_parser = subparsers.add_parser("delete-by-query", help="Delete matching documents")
    dbq_parser.add_argument("index", help="Index name")
    dbq_parser.add_argument("query", help="Search query")
    dbq_parser.add_argument("-f", "--force", action="store_true", help="Skip confirmation")

    # table command
    table_parser = subparsers.add_parser("table", help="Show a table")
    table_parser.add_argument("name", help="Table name")
    table_parser.add_argument("selects", nargs="*", help="key:value filters")
    table_parser.add_argument("--store", help="Directory of the backing store")
    table_parser.add_argument("--base-path", dest="base_path", default="tables", help="Path of tables in the store")
    table_parser.add_argument("--peer", help="URL prefix of a table peer")
    table_parser.add_argument("--limit", type=int, help="Max rows")

    # Parse and dispatch
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr
    )

    if args.command == "cluster":
        if args.cluster_cmd == "health":
            cmd_cluster_health(args)
        elif args.cluster_cmd == "indices":
            cmd_cluster_indices(args)
        else:
            cluster_parser.print_help()
    elif args.command == "create":
        cmd_create(args)
    elif args.command == "count":
        cmd_count(args)
    elif args.command == "search":
        cmd_search(args)
    elif args.command == "delete":
        cmd_delete(args)
    elif args.command == "delete-by-query":
        cmd_delete_by_query(args)
    elif args.command == "table":
        cmd_table(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()

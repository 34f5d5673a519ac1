"""
Command-Line Interface for the News RAG System

Provides CLI commands for:
- Article ingestion (RSS feeds or a JSON / JSON-lines file)
- Semantic search
- Chat question answering (complete or streamed)
- Session and history management
- System statistics
"""

import sys
import argparse
import logging
from pathlib import Path

from .config import get_config
from .ingestion.feed_reader import FeedReader, load_articles_from_file
from .main_pipeline import NewsQuerySystem
from .query.handler import ChatProcessingError, MessageValidationError, SessionNotFoundError


def setup_logging(verbose: bool = False):
    """Configure logging based on verbosity level."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def _open_system() -> NewsQuerySystem:
    system = NewsQuerySystem()
    system.initialize()
    return system


def cmd_ingest(args):
    """Handle the ingest command."""
    if args.file:
        if not Path(args.file).exists():
            print(f"✗ Error: File not found: {args.file}")
            sys.exit(1)
        articles = load_articles_from_file(args.file)
        print(f"Loaded {len(articles)} articles from: {args.file}")
    else:
        config = get_config()
        reader = FeedReader(
            feeds=config.news_feeds,
            sitemap_url=config.news_sitemap_url,
            min_articles=args.limit or config.min_articles,
            timeout=config.feed_timeout,
        )
        try:
            articles = reader.fetch_articles()
        finally:
            reader.close()
        print(f"Fetched {len(articles)} articles from news feeds")

    if not articles:
        print("✗ No articles to ingest")
        sys.exit(1)

    system = _open_system()
    try:
        results = system.ingest_articles(articles, show_progress=True)
    finally:
        system.close()

    print(f"\n{'='*60}")
    print("Ingestion Summary:")
    print(f"  Total articles: {results['total']}")
    print(f"  Successful: {results['successful']}")
    print(f"  Skipped (no content): {results['skipped']}")
    print(f"  Failed: {results['failed']}")
    print(f"  Points stored: {results['points_stored']}")
    print(f"  Processing time: {results['processing_time']:.2f}s")
    print(f"{'='*60}")

    if results['failed'] > 0:
        print("\nFailed articles:")
        for detail in results['details']:
            if not detail['success']:
                print(f"  - {detail['link']}: {detail.get('error', 'Unknown error')}")


def cmd_search(args):
    """Handle the search command."""
    system = _open_system()
    try:
        print(f"Searching for: {args.query}")
        print()
        results = system.search(args.query, top_k=args.top_k)
    finally:
        system.close()

    if not results:
        print("No results found.")
        return

    print(f"Found {len(results)} results:\n")

    for i, result in enumerate(results, 1):
        print(f"[{i}] {result.title}")
        print(f"    URL: {result.link}")
        print(f"    Score: {result.score:.3f}")
        print(f"    Chunk: {result.content[:200]}...")
        print()


def _print_sources(sources):
    if not sources:
        return
    print("\nSources:")
    for i, source in enumerate(sources, 1):
        print(f"  [{i}] {source['title']} ({source['score']:.3f})")
        print(f"      {source['link']}")


def cmd_ask(args):
    """Handle the ask command."""
    system = _open_system()
    handler = system.chat_handler

    try:
        session_id = args.session or handler.create_session().id
        print(f"Question: {args.question}")
        print()

        if args.stream:
            sources = []
            for event in handler.stream_message(args.question, session_id):
                if event['type'] == 'sources':
                    sources = event['sources']
                elif event['type'] == 'content':
                    print(event['content'], end='', flush=True)
                elif event['type'] == 'complete':
                    print()
                elif event['type'] == 'error':
                    print(f"\n✗ {event['error']}")
                    if event.get('details'):
                        print(f"  {event['details']}")
                    sys.exit(1)
            _print_sources(sources)
        else:
            result = handler.send_message(args.question, session_id)
            print("Answer:")
            print(result['message'])
            _print_sources(result['sources'])

    except MessageValidationError as e:
        print(f"✗ Invalid message: {e}")
        sys.exit(1)
    except ChatProcessingError as e:
        print(f"✗ {e}")
        if e.details:
            print(f"  {e.details}")
        sys.exit(1)
    finally:
        system.close()

    print()
    print(f"Session ID: {session_id}")
    print("(Use this session ID for follow-up questions)")


def cmd_history(args):
    """Handle the history command."""
    system = _open_system()
    try:
        history = system.chat_handler.get_history(args.session_id, limit=args.limit)
    except SessionNotFoundError as e:
        print(f"✗ {e}")
        sys.exit(1)
    finally:
        system.close()

    print(f"Session {history['sessionId']} ({history['count']} messages)\n")
    for message in history['messages']:
        print(f"[{message['timestamp']}] {message['role'].capitalize()}: {message['content']}")
        for source in message['sources']:
            print(f"    - {source['title']} {source['link']}")


def cmd_session(args):
    """Handle the session command."""
    system = _open_system()
    handler = system.chat_handler

    try:
        if args.action == 'create':
            session = handler.create_session()
            print(f"✓ Created session: {session.id}")
        elif args.action == 'show':
            session = handler.get_session(args.session_id)
            print(f"Session ID: {session.id}")
            print(f"  Created: {session.created_at}")
            print(f"  Messages: {session.messages_count}")
        elif args.action == 'delete':
            handler.clear_session(args.session_id)
            print(f"✓ Chat history cleared for session: {args.session_id}")
    except (MessageValidationError, SessionNotFoundError) as e:
        print(f"✗ {e}")
        sys.exit(1)
    finally:
        system.close()


def cmd_stats(args):
    """Handle the stats command."""
    system = _open_system()
    try:
        stats = system.get_stats()
    finally:
        system.close()

    print("="*60)
    print("System Statistics")
    print("="*60)
    print(f"Collection: {stats['collection']}")
    print(f"  Exists: {stats['exists']}")
    print(f"  Points: {stats['points_count']}")
    print(f"  Dimension: {stats.get('dimension') or 'N/A'}")
    print(f"  Distance: {stats.get('distance') or 'N/A'}")
    print()
    print(f"Embedding model: {stats['embedding_model']}")
    print(f"LLM model: {stats['llm_model']}")
    print(f"Score threshold: {stats['score_threshold']}")
    print("="*60)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with every subcommand."""
    parser = argparse.ArgumentParser(
        prog='news-rag',
        description='News RAG - Chat over recent news with retrieval-augmented answers',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Ingest articles from the configured RSS feeds
  news-rag ingest --feeds

  # Ingest articles from a JSON-lines file
  news-rag ingest --file articles.jsonl

  # Search ingested chunks
  news-rag search "central bank interest rates"

  # Ask a question (streamed)
  news-rag ask "What happened in the election?" --stream

  # Continue a conversation
  news-rag ask "And who came second?" --session <session-id>

  # Show a session's history
  news-rag history <session-id>
        """
    )

    # Global arguments
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )

    # Subcommands
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Ingest command
    ingest_parser = subparsers.add_parser(
        'ingest',
        help='Ingest news articles'
    )
    source_group = ingest_parser.add_mutually_exclusive_group(required=True)
    source_group.add_argument(
        '--feeds',
        action='store_true',
        help='Fetch articles from the configured RSS feeds'
    )
    source_group.add_argument(
        '--file',
        help='JSON or JSON-lines file of {title, link, content} records'
    )
    ingest_parser.add_argument(
        '--limit',
        type=int,
        help='Maximum number of feed articles (default: MIN_ARTICLES)'
    )
    ingest_parser.set_defaults(func=cmd_ingest)

    # Search command
    search_parser = subparsers.add_parser(
        'search',
        help='Search for relevant article chunks'
    )
    search_parser.add_argument(
        'query',
        help='Search query'
    )
    search_parser.add_argument(
        '--top-k',
        type=int,
        default=5,
        help='Number of results to return (default: 5)'
    )
    search_parser.set_defaults(func=cmd_search)

    # Ask command
    ask_parser = subparsers.add_parser(
        'ask',
        help='Ask a question and get an AI-generated answer'
    )
    ask_parser.add_argument(
        'question',
        help='Question to ask'
    )
    ask_parser.add_argument(
        '--session',
        help='Session ID for multi-turn conversation'
    )
    ask_parser.add_argument(
        '--stream',
        action='store_true',
        help='Print the answer as it is generated'
    )
    ask_parser.set_defaults(func=cmd_ask)

    # History command
    history_parser = subparsers.add_parser(
        'history',
        help='Show the message history of a session'
    )
    history_parser.add_argument(
        'session_id',
        help='Session ID'
    )
    history_parser.add_argument(
        '--limit',
        type=int,
        default=50,
        help='Number of most recent messages (default: 50)'
    )
    history_parser.set_defaults(func=cmd_history)

    # Session command
    session_parser = subparsers.add_parser(
        'session',
        help='Create, show or delete a session'
    )
    session_parser.add_argument(
        'action',
        choices=['create', 'show', 'delete'],
        help='Session action'
    )
    session_parser.add_argument(
        'session_id',
        nargs='?',
        help='Session ID (for show and delete)'
    )
    session_parser.set_defaults(func=cmd_session)

    # Stats command
    stats_parser = subparsers.add_parser(
        'stats',
        help='Display system statistics'
    )
    stats_parser.set_defaults(func=cmd_stats)

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()

    # Parse arguments
    args = parser.parse_args(argv)

    # Setup logging
    setup_logging(args.verbose)

    # Execute command
    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"\n✗ Error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()

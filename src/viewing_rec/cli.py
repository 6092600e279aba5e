import argparse
import asyncio
import atexit
import json
import logging
import sys
from pathlib import Path

import numpy as np
from tqdm import tqdm

from .config import (
    DEFAULT_RECOMMENDATION_LIMIT,
    ENRICH_BATCH_SIZE,
    ENRICH_BATCH_DELAY,
    OMDB_API_KEY,
    SYSTEM_USER_ID,
)
from .database import (
    MovieRecord,
    init_db,
    close_pool,
    insert_records_batch,
    list_records_for_user,
    get_catalog_stats,
)
from .enrichment import EnrichmentProgress, MetadataEnricher, attach_posters
from .errors import ViewingRecError
from .metadata import OMDbClient
from .profile import UserPreferences, aggregate_preferences, top_genres
from .features import profile_to_vector, record_to_vector
from .recommender import MovieRecommender, Recommendation
from .similarity import score_breakdown

logger = logging.getLogger(__name__)

# Register cleanup on exit
atexit.register(close_pool)


def _validate_user_id(user_id: str) -> str:
    """User ids are opaque, but must be non-empty."""
    user_id = (user_id or "").strip()
    if not user_id:
        raise ValueError("User id must not be empty")
    return user_id


def _read_titles(path: str) -> list[str]:
    """Read one title per line from a file, or stdin for '-'."""
    if path == "-":
        lines = sys.stdin.read().splitlines()
    else:
        lines = Path(path).read_text(encoding="utf-8").splitlines()
    return [line.strip() for line in lines if line.strip()]


def _require_api_key(args: argparse.Namespace) -> str:
    api_key = getattr(args, 'api_key', None) or OMDB_API_KEY
    if not api_key:
        raise ValueError("An OMDb API key is required (set OMDB_API_KEY or pass --api-key)")
    return api_key


def cmd_init_db(args: argparse.Namespace) -> None:
    init_db()
    logger.info("Database initialized")


def cmd_enrich(args: argparse.Namespace) -> None:
    """Resolve metadata for a viewing history and store it."""
    user_id = _validate_user_id(args.user_id)
    titles = _read_titles(args.file)
    if not titles:
        logger.error(f"No titles found in {args.file}")
        return

    api_key = _require_api_key(args)
    init_db()

    async def _run() -> list[MovieRecord]:
        with tqdm(total=0, desc="Metadata", unit="title") as bar:
            def _on_progress(progress: EnrichmentProgress) -> None:
                bar.total = progress.total
                bar.n = progress.processed
                bar.set_postfix(batch=f"{progress.batch}/{progress.total_batches}")
                bar.refresh()

            async with OMDbClient(api_key=api_key) as client:
                enricher = MetadataEnricher(
                    client,
                    batch_size=args.batch_size,
                    batch_delay=args.batch_delay,
                    on_progress=_on_progress,
                )
                return await enricher.enrich(titles, user_id)

    records = asyncio.run(_run())
    logger.info(f"Stored metadata for {len(records)} of {len(titles)} history entries")
    if not records:
        logger.warning("No titles could be resolved; check the titles and API key")


def cmd_profile(args: argparse.Namespace) -> None:
    """Show a user's aggregated preferences."""
    user_id = _validate_user_id(args.user_id)
    init_db()
    preferences = aggregate_preferences(list_records_for_user(user_id))

    if args.format == 'json':
        print(json.dumps(preferences.to_dict(), indent=2))
        return

    if not preferences.total_movies:
        logger.error(f"No data for '{user_id}'. Run: viewing-rec enrich {user_id} <history-file>")
        return

    def _top(counts: dict[str, int], n: int = 10) -> str:
        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:n]
        return ", ".join(f"{name} ({count})" for name, count in ranked) or "-"

    print(f"Profile for {user_id}: {preferences.total_movies} titles")
    print(f"  Top genres:    {_top(preferences.genre_counts)}")
    print(f"  Top actors:    {_top(preferences.actor_counts)}")
    print(f"  Top directors: {_top(preferences.director_counts)}")
    if preferences.average_duration:
        print(f"  Avg runtime:   {preferences.average_duration:.0f} min")
    print(f"  Favourite genres for backfill: {', '.join(top_genres(preferences)) or '-'}")


def _output_recommendations(
    recs: list[Recommendation],
    args: argparse.Namespace,
    user_id: str,
    preferences,
) -> None:
    if args.format == 'json':
        print(json.dumps([r.to_dict() for r in recs], indent=2, ensure_ascii=False))
        return

    if not recs:
        print("No recommendations available")
        return

    print(f"\nTop {len(recs)} recommendations for {user_id}:\n")
    profile_vector = profile_to_vector(preferences) if args.explain else None
    for i, rec in enumerate(recs, 1):
        print(f"{i:2}. {rec.title}  [{rec.similarity:.2f}]")
        print(f"      {rec.reason}")
        poster = rec.poster_url or rec.record.poster_url
        if poster:
            print(f"      Poster: {poster}")
        if profile_vector is not None:
            breakdown = score_breakdown(profile_vector, record_to_vector(rec.record))
            parts = [
                f"{name}={value:.2f}" if value is not None else f"{name}=-"
                for name, value in breakdown.items()
            ]
            print(f"      Scores: {', '.join(parts)}")


def cmd_recommend(args: argparse.Namespace) -> None:
    """Generate recommendations."""
    user_id = _validate_user_id(args.user_id)
    init_db()

    if args.profile:
        preferences = UserPreferences.from_dict(json.loads(Path(args.profile).read_text(encoding="utf-8")))
    else:
        preferences = aggregate_preferences(list_records_for_user(user_id))
    rng = np.random.default_rng(args.seed)
    recommender = MovieRecommender(rng=rng)

    try:
        recs = recommender.recommend(user_id, preferences, limit=args.limit)
    except ViewingRecError as e:
        logger.error(f"Recommendation failed: {e}")
        raise SystemExit(1)

    if args.posters and recs:
        api_key = _require_api_key(args)

        async def _posters():
            async with OMDbClient(api_key=api_key) as client:
                return await attach_posters(recs, client)

        recs = asyncio.run(_posters())

    _output_recommendations(recs, args, user_id, preferences)


def cmd_import_catalog(args: argparse.Namespace) -> None:
    """Seed the catalog with records owned by the system user."""
    payload = json.loads(Path(args.file).read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError("Catalog file must contain a JSON list of records")

    records = []
    skipped = 0
    for entry in payload:
        if not isinstance(entry, dict) or not str(entry.get('title') or '').strip():
            skipped += 1
            continue
        records.append(MovieRecord.from_dict(entry, user_id=args.user_id))

    init_db()
    added = insert_records_batch(records)
    logger.info(f"Imported {added} new catalog records ({len(records) - added} already present, {skipped} invalid)")


def cmd_stats(args: argparse.Namespace) -> None:
    """Show record counts and metadata completeness."""
    init_db()
    stats = get_catalog_stats()
    total = stats['total']
    print(f"Records: {total} across {stats['users']} users")
    if not total:
        return
    for label, key in [
        ("genre", 'with_genre'),
        ("cast", 'with_cast'),
        ("director", 'with_director'),
        ("duration", 'with_duration'),
        ("poster", 'with_poster'),
    ]:
        print(f"  With {label + ':':10} {stats[key]:>6} ({stats[key] / total:.0%})")


def main():
    parser = argparse.ArgumentParser(description="Viewing-history recommender")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init-db", help="Create the record store")
    init_parser.set_defaults(func=cmd_init_db)

    enrich_parser = subparsers.add_parser("enrich", help="Fetch metadata for a viewing history")
    enrich_parser.add_argument("user_id", help="Owner of the viewing history")
    enrich_parser.add_argument("file", help="Text file with one title per line ('-' for stdin)")
    enrich_parser.add_argument("--batch-size", type=int, default=ENRICH_BATCH_SIZE,
                               help=f"Concurrent lookups per batch (default: {ENRICH_BATCH_SIZE})")
    enrich_parser.add_argument("--batch-delay", type=float, default=ENRICH_BATCH_DELAY,
                               help=f"Seconds to wait between batches (default: {ENRICH_BATCH_DELAY})")
    enrich_parser.add_argument("--api-key", help="OMDb API key (defaults to OMDB_API_KEY)")
    enrich_parser.set_defaults(func=cmd_enrich)

    profile_parser = subparsers.add_parser("profile", help="Show a user's preference profile")
    profile_parser.add_argument("user_id", help="User id")
    profile_parser.add_argument("--format", choices=['text', 'json'], default='text', help="Output format")
    profile_parser.set_defaults(func=cmd_profile)

    rec_parser = subparsers.add_parser("recommend", help="Generate recommendations")
    rec_parser.add_argument("user_id", help="User id")
    rec_parser.add_argument("--limit", type=int, default=DEFAULT_RECOMMENDATION_LIMIT,
                            help="Number of recommendations")
    rec_parser.add_argument("--seed", type=int, help="Seed for fallback sampling (reproducible output)")
    rec_parser.add_argument("--format", choices=['text', 'json'], default='text', help="Output format")
    rec_parser.add_argument("--explain", action="store_true", help="Show per-dimension scores")
    rec_parser.add_argument("--posters", action="store_true", help="Fetch missing posters from OMDb")
    rec_parser.add_argument("--api-key", help="OMDb API key (defaults to OMDB_API_KEY)")
    rec_parser.add_argument("--profile", help="Rank against a saved `profile --format json` file instead of the stored history")
    rec_parser.set_defaults(func=cmd_recommend)

    import_parser = subparsers.add_parser("import-catalog", help="Import catalog records from JSON")
    import_parser.add_argument("file", help="JSON list of {title, genre, cast, director, duration, poster_url}")
    import_parser.add_argument("--user-id", default=SYSTEM_USER_ID,
                               help=f"Owner of the imported records (default: {SYSTEM_USER_ID})")
    import_parser.set_defaults(func=cmd_import_catalog)

    stats_parser = subparsers.add_parser("stats", help="Show database statistics")
    stats_parser.set_defaults(func=cmd_stats)

    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    args.func(args)


if __name__ == "__main__":
    main()

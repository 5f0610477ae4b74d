"""
Scout Pro Demo Data Seeder
Loads two teams, three players and one scouting report for demonstrations.

Usage:
    DEMO_EMAIL=coach@demo.com DEMO_PASSWORD=... python seed_demo.py

Requires:
    - DEMO_EMAIL and DEMO_PASSWORD set (no built-in demo credentials)
    - the usual Scout Pro settings (SCOUTPRO_DATA_DIR / DB_FILE) or defaults
"""

import logging
import os
import sys

from scout_config import Settings, configure_logging
from scout_context import build_context

logger = logging.getLogger("scoutpro.seed")

# (name, league)
TEAMS = [
    ("City Hawks", "Metro League"),
    ("Valley Eagles", "Metro League"),
]

# (name, position, jersey number, team index)
PLAYERS = [
    ("Mike Johnson", "SS", "12", 0),
    ("Alex Rodriguez", "CF", "7", 0),
    ("Sam Williams", "3B", "15", 1),
]

SAMPLE_EVALUATIONS = {
    "hitting_contactAbility": "Above Average",
    "hitting_power": "Average",
    "fielding_hands": "Excellent",
    "fielding_range": "Above Average",
    "running_speed": "Average",
}

SAMPLE_NOTES = (
    "Strong defensive player with good contact skills. "
    "Shows potential for improvement in power hitting."
)


def seed(ctx, email: str, password: str) -> dict:
    """Create the demo coach (if needed) and the sample data set."""
    email = ctx.auth.normalize_email(email)
    user = ctx.store.get_user_by_email(email)
    if user:
        logger.info("Demo user %s already exists", email)
    else:
        ctx.auth.register(email, password, ctx.auth.registration_code)
        user = ctx.store.get_user_by_email(email)

    existing = {t["name"]: t["id"] for t in ctx.store.list_teams()}
    team_ids = []
    for name, league in TEAMS:
        if name not in existing:
            existing[name] = ctx.store.create_team(name, league, created_by=user["id"])["id"]
        team_ids.append(existing[name])

    players = []
    for name, position, jersey, team_idx in PLAYERS:
        roster = {p["name"]: p for p in ctx.store.list_players(team_id=team_ids[team_idx])}
        if name in roster:
            players.append(roster[name])
            continue
        players.append(ctx.store.create_player(name, position, jersey, team_ids[team_idx]))

    reports = ctx.store.list_reports(player_id=players[0]["id"])
    if not reports:
        reports = [ctx.store.create_report(
            players[0]["id"], user["id"], ctx.clock().date(), SAMPLE_EVALUATIONS, SAMPLE_NOTES
        )]

    logger.info("Seeded %d teams, %d players, %d reports", len(team_ids), len(players), len(reports))
    return {"user": user["id"], "teams": team_ids, "players": [p["id"] for p in players]}


def main() -> int:
    configure_logging()
    email = os.getenv("DEMO_EMAIL")
    password = os.getenv("DEMO_PASSWORD")
    if not email or not password:
        logger.error("DEMO_EMAIL and DEMO_PASSWORD must be set")
        return 1

    ctx = build_context(Settings.from_env())
    ctx.start()
    try:
        seed(ctx, email, password)
    finally:
        ctx.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())

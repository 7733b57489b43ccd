"""
Scorecard tables.

Renders an innings' player figures as pandas DataFrames for the CLI and
for CSV export of a finished match.
"""

from __future__ import annotations

from pathlib import Path

import pandas as pd

from livescore.state.innings import InningsState
from livescore.stats.aggregator import InningsStats

BATTING_COLUMNS = ["batter", "dismissal", "R", "B", "4s", "6s", "SR"]
BOWLING_COLUMNS = ["bowler", "O", "M", "R", "W", "Econ", "Wd", "NB"]


def batting_card(stats: InningsStats) -> pd.DataFrame:
    rows = [
        {
            "batter": b.player,
            "dismissal": b.dismissal_text,
            "R": b.runs,
            "B": b.balls,
            "4s": b.fours,
            "6s": b.sixes,
            "SR": round(b.strike_rate, 2),
        }
        for b in stats.batting.values()
    ]
    return pd.DataFrame(rows, columns=BATTING_COLUMNS)


def bowling_card(stats: InningsStats) -> pd.DataFrame:
    rows = [
        {
            "bowler": b.player,
            "O": b.overs_str,
            "M": b.maidens,
            "R": b.runs_conceded,
            "W": b.wickets,
            "Econ": round(b.economy, 2),
            "Wd": b.wides,
            "NB": b.no_balls,
        }
        for b in stats.bowling.values()
    ]
    return pd.DataFrame(rows, columns=BOWLING_COLUMNS)


def summary_str(innings: InningsState, stats: InningsStats) -> str:
    """Plain-text scorecard for one innings."""
    lines = [
        f"Innings {innings.number}: {innings.batting_team} "
        f"{innings.runs}/{innings.wickets} ({innings.overs_str} ov)",
        "",
    ]
    batting = batting_card(stats)
    if not batting.empty:
        lines.append(batting.to_string(index=False))
    e = innings.extras
    lines.append(
        f"Extras: {e.total} (w {e.wides}, nb {e.no_balls}, b {e.byes}, lb {e.leg_byes}, p {e.penalty})"
    )
    if innings.fall_of_wickets:
        fow = ", ".join(
            f"{f.wicket}-{f.score} ({f.player_out}, {f.overs})" for f in innings.fall_of_wickets
        )
        lines.append(f"Fall of wickets: {fow}")
    lines.append("")
    bowling = bowling_card(stats)
    if not bowling.empty:
        lines.append(bowling.to_string(index=False))
    return "\n".join(lines)


def export_csv(stats: InningsStats, out_dir: Path) -> tuple[Path, Path]:
    """Write batting and bowling cards as CSV files."""
    out_dir.mkdir(parents=True, exist_ok=True)
    bat_path = out_dir / f"{stats.innings_id}_batting.csv"
    bowl_path = out_dir / f"{stats.innings_id}_bowling.csv"
    batting_card(stats).to_csv(bat_path, index=False)
    bowling_card(stats).to_csv(bowl_path, index=False)
    return bat_path, bowl_path

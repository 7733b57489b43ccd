"""
One-line commentary for accepted deliveries, shown on the scoreboard.
"""

from __future__ import annotations

from livescore.data.ball_event import BallEvent, DismissalType, ExtraType


def describe_delivery(event: BallEvent) -> str:
    head = f"{event.over_ball_str} {event.bowler} to {event.striker}"
    if event.dead_ball:
        text = "dead ball called"
        if event.penalty_runs:
            text += f", {event.penalty_runs} penalty runs"
        if event.dismissal is not None:
            text += f", {event.dismissal.player_out} retired"
        return f"{head}, {text}"

    parts: list[str] = []
    if event.free_hit:
        parts.append("free hit")

    if event.extra_type == ExtraType.WIDE:
        parts.append(f"WIDE, {event.extra_runs} run{'s' if event.extra_runs != 1 else ''}")
    elif event.extra_type == ExtraType.NO_BALL:
        parts.append("NO BALL")
        if event.runs_off_bat:
            parts.append(_bat_runs(event.runs_off_bat))
        parts.append(f"{event.total_runs} in total")
    elif event.extra_type in (ExtraType.BYE, ExtraType.LEG_BYE):
        label = "bye" if event.extra_type == ExtraType.BYE else "leg bye"
        parts.append(f"{event.extra_runs} {label}{'s' if event.extra_runs != 1 else ''}")
    else:
        parts.append(_bat_runs(event.runs_off_bat))

    if event.short_run:
        parts.append("one short")
    if event.penalty_runs:
        parts.append(f"{event.penalty_runs} penalty runs")
    if event.dismissal is not None:
        parts.append(_dismissal(event))
    return f"{head}, {', '.join(parts)}"


def _bat_runs(runs: int) -> str:
    if runs == 0:
        return "no run"
    if runs == 4:
        return "FOUR"
    if runs == 6:
        return "SIX"
    return f"{runs} run{'s' if runs != 1 else ''}"


def _dismissal(event: BallEvent) -> str:
    d = event.dismissal
    if d.kind == DismissalType.CAUGHT:
        how = f"caught by {d.fielder}" if d.fielder else "caught"
    elif d.kind == DismissalType.RUN_OUT:
        how = f"run out ({d.fielder})" if d.fielder else "run out"
    elif d.kind == DismissalType.STUMPED:
        how = f"stumped by {d.fielder}" if d.fielder else "stumped"
    else:
        how = d.kind.value.replace("_", " ")
    return f"OUT! {d.player_out} {how}"

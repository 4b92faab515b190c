"""Transcript and audit export.

Everything here works from the messages replayed out of a session log
(MessageLog.query), so audits do not depend on the orchestrator's own
session record. Provides JSON, Markdown and CSV exports plus a rich
terminal rendering of the transcript.
"""

from __future__ import annotations

import csv
import io
import json
from collections.abc import Sequence

from rich.console import Console
from rich.table import Table

from jurybox.schemas.audit import AuditReport, AuditSummary, AuditTimelineEntry
from jurybox.schemas.messages import AgentMessage, EvaluationRound, MessageKind

_KIND_COLORS = {
    MessageKind.SCORE: "cyan",
    MessageKind.DISCUSSION: "white",
    MessageKind.ADJUSTMENT: "yellow",
    MessageKind.FINAL: "bold green",
}

_CSV_FIELDS = [
    "timestamp",
    "round",
    "kind",
    "agent_id",
    "agent_name",
    "score",
    "original_score",
    "adjusted_score",
    "confidence",
    "text",
]


def build_transcript(messages: Sequence[AgentMessage]) -> list[EvaluationRound]:
    """Regroup a replayed log into rounds.

    The final message is not part of any round. Round timings are the
    first and last message timestamps of the round; failures and
    variance are not recoverable from the log and stay empty.
    """
    grouped: dict[int, list[AgentMessage]] = {}
    for message in messages:
        if message.kind == MessageKind.FINAL:
            continue
        grouped.setdefault(message.round_number, []).append(message)

    return [
        EvaluationRound(
            round_number=round_number,
            started_at=round_messages[0].timestamp,
            ended_at=round_messages[-1].timestamp,
            messages=round_messages,
        )
        for round_number, round_messages in sorted(grouped.items())
    ]


def describe_message(message: AgentMessage) -> str:
    """Human-readable one-line description of a log message."""
    who = message.agent_name or message.agent_id
    match message.kind:
        case MessageKind.SCORE:
            return f"{who} submitted score {message.score:.2f}"
        case MessageKind.DISCUSSION:
            return f"{who} discussed in round {message.round_number}"
        case MessageKind.ADJUSTMENT:
            return (
                f"{who} adjusted score {message.original_score:.2f} -> "
                f"{message.adjusted_score:.2f} in round {message.round_number}"
            )
        case MessageKind.FINAL:
            return (
                f"Consensus reached: {message.score:.2f} via {message.algorithm} "
                f"after {message.total_rounds} rounds"
            )
    return f"Message: {message.kind}"


def build_audit_report(session_id: str, messages: Sequence[AgentMessage]) -> AuditReport:
    """Build the audit timeline and summary for one session log.

    A log without a final message is reported as abandoned.
    """
    summary = AuditSummary()
    participants: list[str] = []
    for message in messages:
        if message.kind == MessageKind.SCORE:
            summary.scores_submitted += 1
        elif message.kind == MessageKind.DISCUSSION:
            summary.discussions += 1
        elif message.kind == MessageKind.ADJUSTMENT:
            summary.adjustments += 1
        elif message.kind == MessageKind.FINAL:
            summary.consensus_reached = True
            summary.final_score = message.score
            summary.algorithm = message.algorithm
            continue
        summary.rounds_completed = max(summary.rounds_completed, message.round_number)
        if message.agent_id not in participants:
            participants.append(message.agent_id)

    summary.participants = participants
    summary.abandoned = not summary.consensus_reached

    return AuditReport(
        session_id=session_id,
        total_messages=len(messages),
        timeline=[
            AuditTimelineEntry(
                timestamp=m.timestamp,
                kind=m.kind,
                agent_id=m.agent_id,
                round_number=m.round_number,
                description=describe_message(m),
            )
            for m in messages
        ],
        summary=summary,
    )


def export_json(report: AuditReport) -> str:
    """Export an audit report as pretty-printed JSON."""
    return report.model_dump_json(indent=2)


def export_markdown(report: AuditReport, rounds: Sequence[EvaluationRound] = ()) -> str:
    """Export an audit report (and optionally the transcript) as Markdown."""
    summary = report.summary
    lines: list[str] = []

    lines.append(f"# Evaluation Audit: {report.session_id}")
    lines.append("")

    lines.append("## Summary")
    lines.append("")
    status = "Consensus reached" if summary.consensus_reached else "Abandoned (no final message)"
    lines.append(f"- **Status:** {status}")
    if summary.final_score is not None:
        lines.append(f"- **Final Score:** {summary.final_score:.2f}/10 ({summary.algorithm})")
    lines.append(f"- **Participants:** {', '.join(summary.participants) or 'none'}")
    lines.append(f"- **Scores Submitted:** {summary.scores_submitted}")
    lines.append(f"- **Discussion Rounds:** {summary.rounds_completed}")
    lines.append(f"- **Adjustments:** {summary.adjustments}")
    lines.append(f"- **Messages:** {report.total_messages}")
    lines.append("")

    for evaluation_round in rounds:
        title = "Independent Scoring" if evaluation_round.round_number == 0 else (
            f"Discussion Round {evaluation_round.round_number}"
        )
        lines.append(f"## {title}")
        lines.append("")
        lines.append("| Agent | Kind | Score | Text |")
        lines.append("|-------|------|-------|------|")
        for m in evaluation_round.messages:
            text = (m.reasoning or m.discussion).replace("|", "\\|").replace("\n", " ")
            lines.append(f"| {m.agent_id} | {m.kind} | {_score_cell(m)} | {text} |")
        for agent_id, reason in evaluation_round.failed_agents.items():
            lines.append(f"| {agent_id} | failed | - | {reason} |")
        lines.append("")

    lines.append("## Timeline")
    lines.append("")
    for entry in report.timeline:
        lines.append(f"- `{entry.timestamp.isoformat()}` {entry.description}")
    lines.append("")

    return "\n".join(lines)


def export_csv(messages: Sequence[AgentMessage]) -> str:
    """Export log messages as CSV, one row per message."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=_CSV_FIELDS)
    writer.writeheader()
    for m in messages:
        writer.writerow({
            "timestamp": m.timestamp.isoformat(),
            "round": m.round_number,
            "kind": m.kind.value,
            "agent_id": m.agent_id,
            "agent_name": m.agent_name,
            "score": "" if m.score is None else m.score,
            "original_score": "" if m.original_score is None else m.original_score,
            "adjusted_score": "" if m.adjusted_score is None else m.adjusted_score,
            "confidence": "" if m.confidence is None else m.confidence,
            "text": m.reasoning or m.discussion
            or (json.dumps(m.individual_scores) if m.individual_scores else ""),
        })
    return buffer.getvalue()


def _score_cell(message: AgentMessage) -> str:
    if message.kind == MessageKind.ADJUSTMENT:
        return f"{message.original_score:.2f} -> {message.adjusted_score:.2f}"
    if message.score is not None:
        return f"{message.score:.2f}"
    return "-"


def render_transcript(rounds: Sequence[EvaluationRound], console: Console) -> None:
    """Print one rich table per round."""
    for evaluation_round in rounds:
        title = "Independent Scoring" if evaluation_round.round_number == 0 else (
            f"Discussion Round {evaluation_round.round_number}"
        )
        if evaluation_round.variance is not None:
            title += f" (variance {evaluation_round.variance:.3f})"

        table = Table(title=title, title_style="bold cyan", show_lines=False)
        table.add_column("Agent", style="bold")
        table.add_column("Kind")
        table.add_column("Score", justify="right")
        table.add_column("Text", no_wrap=False, max_width=60)

        for m in evaluation_round.messages:
            color = _KIND_COLORS.get(m.kind, "white")
            table.add_row(
                m.agent_name or m.agent_id,
                f"[{color}]{m.kind.value}[/]",
                _score_cell(m),
                m.reasoning or m.discussion,
            )
        for agent_id, reason in evaluation_round.failed_agents.items():
            table.add_row(agent_id, "[red]failed[/]", "-", reason)

        console.print(table)

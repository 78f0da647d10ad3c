"""
Generate Mermaid diagrams from the delivery and courier status machines.

Usage:
    python scripts/generate_state_diagrams.py                  # print to stdout
    python scripts/generate_state_diagrams.py --update-design  # rewrite the block in DESIGN.md
    python scripts/generate_state_diagrams.py --check          # fail if DESIGN.md is stale (CI)
"""
import argparse
import re
import sys
from pathlib import Path
from typing import Any

from app.db.models.courier import CourierStatus
from app.db.models.delivery import DeliveryStatus
from app.state_machine.delivery_lifecycle import (
    ASSIGNMENT_TRANSITIONS,
    COURIER_TARGET_STATUSES,
    DELIVERY_TRANSITIONS,
    TERMINAL_STATUSES,
)

DESIGN_MD_PATH = Path(__file__).resolve().parent.parent / "DESIGN.md"
START_MARKER = "<!-- STATE_DIAGRAMS_START -->"
END_MARKER = "<!-- STATE_DIAGRAMS_END -->"

DELIVERY_LABELS: dict[str, str] = {
    DeliveryStatus.REQUESTED.value: "Requested",
    DeliveryStatus.ACCEPTED.value: "Accepted",
    DeliveryStatus.PICKED_UP.value: "Picked up",
    DeliveryStatus.IN_TRANSIT.value: "In transit",
    DeliveryStatus.DELIVERED.value: "Delivered",
    DeliveryStatus.CANCELLED.value: "Cancelled",
}

# Courier status moves are spread over several services, listed here by hand
COURIER_TRANSITIONS: list[tuple[CourierStatus, CourierStatus, str]] = [
    (CourierStatus.AVAILABLE, CourierStatus.UNAVAILABLE, "courier or admin"),
    (CourierStatus.UNAVAILABLE, CourierStatus.AVAILABLE, "courier or admin"),
    (CourierStatus.AVAILABLE, CourierStatus.ON_DELIVERY, "assigned"),
    (CourierStatus.ON_DELIVERY, CourierStatus.AVAILABLE, "delivered / cancelled / deleted"),
]


def _sanitize_id(state_value: str) -> str:
    """Turn a status value into a valid Mermaid identifier."""
    return state_value.replace("-", "_").replace(".", "_")


def _delivery_edge_label(source: DeliveryStatus, target: DeliveryStatus) -> str:
    if (source, target) in ASSIGNMENT_TRANSITIONS:
        return "assign courier"
    if target == DeliveryStatus.CANCELLED:
        return "owner or admin"
    if target in COURIER_TARGET_STATUSES:
        return "courier, owner or admin"
    return ""


def generate_mermaid_from_transitions(
    transitions: dict[Any, list[Any]],
    labels: dict[str, str],
    initial: Any,
    terminal: frozenset = frozenset(),
) -> str:
    """
    Build a stateDiagram-v2 from a transition table.

    Args:
        transitions: {status: [target statuses]}
        labels: {status value: display label}
        initial: the status new records start in
        terminal: statuses that end the machine
    """
    lines: list[str] = ["stateDiagram-v2"]

    all_states: set[str] = set()
    for source, targets in transitions.items():
        all_states.add(source.value)
        all_states.update(target.value for target in targets)

    for state_value in sorted(all_states):
        lines.append(f"    {_sanitize_id(state_value)} : {labels.get(state_value, state_value)}")

    lines.append("")
    lines.append(f"    [*] --> {_sanitize_id(initial.value)}")

    for source, targets in transitions.items():
        for target in targets:
            edge = f"    {_sanitize_id(source.value)} --> {_sanitize_id(target.value)}"
            label = _delivery_edge_label(source, target) if isinstance(source, DeliveryStatus) else ""
            lines.append(f"{edge} : {label}" if label else edge)

    for state in sorted(terminal, key=lambda s: s.value):
        lines.append(f"    {_sanitize_id(state.value)} --> [*]")

    return "\n".join(lines)


def generate_delivery_status_diagram() -> str:
    return generate_mermaid_from_transitions(
        DELIVERY_TRANSITIONS,
        DELIVERY_LABELS,
        DeliveryStatus.REQUESTED,
        TERMINAL_STATUSES,
    )


def generate_courier_status_diagram() -> str:
    lines = ["stateDiagram-v2", f"    [*] --> {_sanitize_id(CourierStatus.AVAILABLE.value)} : registered"]
    for source, target, label in COURIER_TRANSITIONS:
        lines.append(f"    {_sanitize_id(source.value)} --> {_sanitize_id(target.value)} : {label}")
    return "\n".join(lines)


def generate_all_diagrams() -> dict[str, str]:
    """All diagrams as {title: mermaid source}."""
    return {
        "Delivery status (DeliveryStatus)": generate_delivery_status_diagram(),
        "Courier status (CourierStatus)": generate_courier_status_diagram(),
    }


def format_diagrams_as_markdown(diagrams: dict[str, str]) -> str:
    sections: list[str] = []
    for name, mermaid_code in diagrams.items():
        sections.append(f"#### {name}\n")
        sections.append(f"```mermaid\n{mermaid_code}\n```\n")
    return "\n".join(sections)


def _section(markdown_content: str) -> str:
    return f"{START_MARKER}\n\n### State diagrams\n\n{markdown_content}\n{END_MARKER}"


def _marker_pattern() -> re.Pattern:
    return re.compile(re.escape(START_MARKER) + r".*?" + re.escape(END_MARKER), re.DOTALL)


def update_design_md(markdown_content: str, path: Path = DESIGN_MD_PATH) -> None:
    """Replace the marked block in DESIGN.md, or append one."""
    content = path.read_text(encoding="utf-8")
    new_section = _section(markdown_content)

    if START_MARKER in content:
        content = _marker_pattern().sub(lambda _: new_section, content)
    else:
        content = content.rstrip("\n") + "\n\n" + new_section + "\n"

    path.write_text(content, encoding="utf-8")
    print(f"Updated: {path}")


def check_design_md(markdown_content: str, path: Path = DESIGN_MD_PATH) -> bool:
    """
    Whether the diagrams in DESIGN.md match the code.

    Returns True when in sync, False otherwise.
    """
    content = path.read_text(encoding="utf-8")

    match = _marker_pattern().search(content)
    if not match:
        print(f"Error: no diagram markers in {path.name}")
        return False

    if match.group(0) == _section(markdown_content):
        print("Diagrams are in sync with the code")
        return True

    print(f"Error: diagrams in {path.name} are out of date")
    print("Run: python scripts/generate_state_diagrams.py --update-design")
    return False


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Generate Mermaid diagrams from the status machines"
    )
    parser.add_argument(
        "--update-design",
        action="store_true",
        help="rewrite the diagram block in DESIGN.md",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="exit non-zero if DESIGN.md is out of date (for CI)",
    )
    args = parser.parse_args()

    markdown = format_diagrams_as_markdown(generate_all_diagrams())

    if args.check:
        sys.exit(0 if check_design_md(markdown) else 1)
    elif args.update_design:
        update_design_md(markdown)
    else:
        print(markdown)


if __name__ == "__main__":
    main()

"""Local deterministic agent for CLI provider integration tests and sandbox runs."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

TRANSCRIPT_MARKER = "meeting transcript"


def main(argv: list[str] | None = None) -> int:
    """Print a plan (or a transcript spec) wrapped in a line of prose."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt-file", required=True)
    parser.add_argument("--milestones", type=int, default=3)
    parser.add_argument("--fail-with", default=None, help="Exit 1 with this stderr message.")
    args = parser.parse_args(argv)

    if args.fail_with:
        sys.stderr.write(args.fail_with + "\n")
        return 1

    prompt = Path(args.prompt_file).read_text("utf-8")
    if TRANSCRIPT_MARKER in prompt.lower():
        payload: dict[str, object] = {
            "goal": "Ship a status page for the demo service",
            "acceptance_criteria": ["Status page lists every service", "Page loads under 1s"],
            "tech_stack": {"backend": "python", "frontend": "htmx"},
            "time_budget_hours": 3,
            "milestones": [
                {"title": "Status API", "description": "Expose health data.", "estimated_hours": 1},
                {"title": "Status UI", "description": "Render the page.", "estimated_hours": 2},
            ],
        }
    else:
        payload = {
            "milestones": [
                {
                    "title": f"Milestone {index}",
                    "description": f"Deliver increment {index}.",
                    "estimated_hours": 1,
                    "tasks": [f"Task {index}.1", f"Task {index}.2"],
                }
                for index in range(1, max(0, args.milestones) + 1)
            ],
        }
    sys.stdout.write("Here is the requested JSON:\n")
    sys.stdout.write(json.dumps(payload, indent=2))
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

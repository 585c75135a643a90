"""Entry point for the interactive dice roller."""

from rollengine.config.settings import settings
from rollengine.core import initialize_roll_controller, RollController, RollEngineError
from rollengine.models import BreakdownType, RollContext, RollResult
from rollengine.scenarios import RAPIER, create_rogue_context
from rollengine.utils.logging import setup_logging

HELP = """Commands:
  <expression>          roll it, e.g. 1d20+5 or attack:1d20+5,damage:1d8+3
  analyze <expression>  preview min/max/average without rolling
  rapier                the sample rogue attacks with a rapier
  history               recent rolls, newest first
  stats                 totals across the roll history
  clear                 forget the roll history
  quit                  leave"""


# ─────────────────────────────────────────────────────────────────────────────
# Output
# ─────────────────────────────────────────────────────────────────────────────
def format_result(result: RollResult) -> str:
    lines = []
    for part in result.multi_results or [result]:
        label = part.metadata.label or part.metadata.roll_type.value
        items = ", ".join(
            f"{item.label} {item.value}" + (" (dropped)" if item.details.dropped else "")
            for item in part.breakdown
            if item.type is not BreakdownType.CONDITION
        )
        flags = " CRITICAL!" if part.critical_success else " FUMBLE" if part.critical_failure else ""
        lines.append(f"{label}: {part.total} [{items}]{flags}")
    return "\n".join(lines)


# ─────────────────────────────────────────────────────────────────────────────
# Roll Loop
# ─────────────────────────────────────────────────────────────────────────────
def get_player_input() -> str | None:
    """Get input from the player, handling EOF and interrupts."""
    try:
        text = input("\n> ").strip()
        return text if text else None
    except (EOFError, KeyboardInterrupt):
        return "quit"


def roll_loop(controller: RollController, context: RollContext) -> None:
    """Main loop - read commands until quit."""

    while True:
        player_input = get_player_input()

        if player_input is None:
            print(HELP)
            continue

        command_lower = player_input.lower()

        if command_lower in ("quit", "exit", "q"):
            print("May your dice roll high!")
            break

        try:
            if command_lower == "history":
                for entry in controller.history[:10]:
                    meta = entry.result.metadata
                    print(f"{entry.timestamp:%H:%M:%S} {meta.name or meta.expression}: {entry.result.total}")
            elif command_lower == "stats":
                stats = controller.stats()
                print(
                    f"{stats.total_rolls} rolls, average {stats.average_roll}, "
                    f"{stats.critical_hits} crits, {stats.critical_failures} fumbles"
                )
            elif command_lower == "clear":
                controller.clear_history()
                print("History cleared")
            elif command_lower == "rapier":
                outcome = controller.roll_weapon(RAPIER, create_rogue_context())
                print(format_result(outcome.attack_result))
                if outcome.damage_result is not None:
                    print(format_result(outcome.damage_result))
            elif command_lower.startswith("analyze "):
                expression = player_input[len("analyze "):]
                definition = controller.create_roll_definition("raw", context, expression, name=expression)
                info = controller.engine.analyze_roll(definition)
                for label, estimate in info.label_ranges.items():
                    print(f"{label}: {estimate.min}-{estimate.max} (avg {estimate.average})")
                for note in info.notes:
                    print(f"  {note}")
            else:
                print(format_result(controller.roll_multi_expression(player_input, context)))

        except RollEngineError as e:
            print(f"\n[{e.code}] {e.message}")


def main() -> None:
    """Main entry point."""
    # Setup logging
    logger = setup_logging(
        level=settings.log_level,
        log_file=settings.log_file,
        enable_color=settings.enable_color,
    )

    logger.info("Starting dice roller")
    logger.debug(f"Configuration: {settings}")

    controller = initialize_roll_controller()
    print("Dice roller ready. Press enter for help.")
    roll_loop(controller, RollContext())


if __name__ == "__main__":
    main()

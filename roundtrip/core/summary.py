"""Final suite report in plain text and HTML."""

from .models import SuiteSummary

SUCCESS_COLOR = "00AA00"
FAILURE_COLOR = "AA0000"


def build_summary(
    origin: str,
    succeeded: tuple[str, ...],
    failed: tuple[str, ...],
    unfinished: tuple[str, ...],
) -> SuiteSummary:
    """Render the conclusion report.

    Args:
        origin: Tag identifying who ran the suite; prefixes every line.
        succeeded: Names that succeeded, in dispatch order.
        failed: Names that failed.
        unfinished: Names still running at conclusion.

    Returns:
        SuiteSummary carrying both renderings.
    """
    succeeded_rec = f"{len(succeeded)} tests succeeded"
    if failed or unfinished:
        total = len(succeeded) + len(failed) + len(unfinished)
        succeeded_rec += f" of {total} total"

    color = FAILURE_COLOR if failed or unfinished else SUCCESS_COLOR
    plain = f"{origin}: Testing complete, {succeeded_rec}"
    html = (
        f"{origin}: <strong><font data-mx-color='#{color}' color='#{color}'>"
        f"Testing complete</font></strong>, {succeeded_rec}"
    )

    if failed:
        failed_list = "".join(f" {name}" for name in failed)
        plain += f"\nFAILED:{failed_list}"
        html += f"<br><strong>Failed:</strong>{failed_list}"
    if unfinished:
        dnf_list = "".join(f" {name}" for name in unfinished)
        plain += f"\nDID NOT FINISH:{dnf_list}"
        html += f"<br><strong>Did not finish:</strong>{dnf_list}"

    return SuiteSummary(
        origin=origin,
        succeeded=succeeded,
        failed=failed,
        unfinished=unfinished,
        plain_text=plain,
        html_text=html,
    )

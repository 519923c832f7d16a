"""
Bill Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SHAPE VALIDATION:
- Splits present, no housemate listed twice, no negative amounts
- Settlements go from one person to a different person
- Split amounts that miss the bill amount, percentages that miss 100
  and all-zero shares are warnings: the bill is saved as entered

STAGE 2 - REFERENCE VALIDATION:
- Payer and split housemates are on the roster
- Category exists
- These need the current ledger, and only produce warnings: bills are
  allowed to reference housemates who have since been removed

IMPORTANT: Validation NEVER silently fixes issues.
It reports them; the ledger stores exactly what the user entered.
"""

from collections import Counter
from typing import Iterable, Optional

from utility_splitter.config import get_settings
from utility_splitter.models.ledger import (
    Bill,
    BillCategory,
    Housemate,
    SplitMethod,
)
from utility_splitter.models.rows import SYSTEM_PAYER_ID
from utility_splitter.models.validation import ValidationIssue, ValidationResult


class BillValidator:
    """
    Validates a bill against its own numbers and the current roster.

    Stage 1: Shape validation (needs only the bill)
    Stage 2: Reference validation (needs housemates and categories)
    """

    def __init__(self, tolerance: Optional[float] = None):
        """
        Initialize validator.

        Args:
            tolerance: Allowed gap between the bill amount and the sum of
                       its splits. Defaults to the configured split tolerance.
        """
        if tolerance is None:
            tolerance = get_settings().app.split_tolerance
        self._tolerance = tolerance

    def _validate_shape(self, bill: Bill) -> list[ValidationIssue]:
        """
        Stage 1: Shape validation.

        Returns: list_of_issues
        """
        issues = []

        # Imported history rows carry no split information
        if bill.payer_id == SYSTEM_PAYER_ID:
            return issues

        if not bill.splits:
            issues.append(ValidationIssue(
                field="splits",
                issue_type="missing",
                message="Bill has no participants",
                severity="error",
                suggested_fix="Select at least one housemate to split with",
            ))
            return issues

        counts = Counter(split.housemate_id for split in bill.splits)
        for housemate_id, count in counts.items():
            if count > 1:
                issues.append(ValidationIssue(
                    field="splits",
                    issue_type="duplicate_participant",
                    message=f"Housemate {housemate_id} appears {count} times in the splits",
                    severity="error",
                ))

        if any(split.amount < 0 for split in bill.splits):
            issues.append(ValidationIssue(
                field="splits",
                issue_type="invalid_value",
                message="Split amounts cannot be negative",
                severity="error",
            ))

        diff = bill.split_total - bill.amount
        if abs(diff) > self._tolerance:
            issues.append(ValidationIssue(
                field="splits",
                issue_type="split_mismatch",
                message=(
                    f"Splits add up to {bill.split_total:.2f} "
                    f"but the bill is {bill.amount:.2f}"
                ),
                severity="warning",
                suggested_fix=(
                    "Adjust the amounts" if bill.split_method == SplitMethod.EXACT
                    else "Check the shares entered for each housemate"
                ),
            ))

        if bill.split_method == SplitMethod.PERCENTAGE:
            percent = sum(split.share or 0 for split in bill.splits)
            if abs(percent - 100) > self._tolerance:
                issues.append(ValidationIssue(
                    field="splits",
                    issue_type="percentage_total",
                    message=f"Percentages add up to {percent:g}%, not 100%",
                    severity="warning",
                ))

        if bill.split_method == SplitMethod.SHARES:
            if sum(split.share or 0 for split in bill.splits) == 0:
                issues.append(ValidationIssue(
                    field="splits",
                    issue_type="zero_shares",
                    message="Every share is zero, so nobody is charged",
                    severity="warning",
                    suggested_fix="Give at least one housemate a share",
                ))

        if bill.is_settlement and bill.splits[0].housemate_id == bill.payer_id:
            issues.append(ValidationIssue(
                field="splits",
                issue_type="self_settlement",
                message="A settlement cannot be paid to the payer themselves",
                severity="error",
            ))

        return issues

    def _validate_references(
        self,
        bill: Bill,
        housemates: Iterable[Housemate],
        categories: Iterable[BillCategory],
    ) -> list[ValidationIssue]:
        """
        Stage 2: Reference validation.

        Returns: list_of_issues
        """
        issues = []
        roster = {h.id for h in housemates}
        category_ids = {c.id for c in categories}

        if bill.payer_id != SYSTEM_PAYER_ID and bill.payer_id not in roster:
            issues.append(ValidationIssue(
                field="payer_id",
                issue_type="unknown_housemate",
                message=f"Payer {bill.payer_id} is not a current housemate",
                severity="warning",
            ))

        for split in bill.splits:
            if split.housemate_id not in roster:
                issues.append(ValidationIssue(
                    field="splits",
                    issue_type="unknown_housemate",
                    message=f"Housemate {split.housemate_id} is not a current housemate",
                    severity="warning",
                ))

        if category_ids and bill.category_id not in category_ids:
            issues.append(ValidationIssue(
                field="category_id",
                issue_type="unknown_category",
                message=f"Category {bill.category_id} does not exist",
                severity="warning",
                suggested_fix="Pick a category from the list or add it first",
            ))

        return issues

    def validate(
        self,
        bill: Bill,
        housemates: Optional[Iterable[Housemate]] = None,
        categories: Optional[Iterable[BillCategory]] = None,
    ) -> ValidationResult:
        """
        Run both stages.

        Args:
            bill: The bill to validate
            housemates: Current roster; stage 2 is skipped when None
            categories: Current categories

        Returns:
            ValidationResult with all issues found
        """
        issues = self._validate_shape(bill)
        if housemates is not None:
            issues.extend(self._validate_references(bill, housemates, categories or []))

        return ValidationResult(
            bill_id=bill.id,
            is_valid=not any(issue.severity == "error" for issue in issues),
            issues=issues,
        )

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what we show to housemates.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed."

        lines = []

        if result.errors:
            lines.append("❌ This bill cannot be saved yet:")
            for issue in result.errors:
                lines.append(f"   • {issue.message}")
                if issue.suggested_fix:
                    lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)

"""
Score validation and grade lookup.

Everything here is a pure function of its arguments and the configured
grading scale, so it is safe to call from any thread and as often as needed.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from django.core.exceptions import ImproperlyConfigured

from . import config
from .exceptions import ValidationError

TWO_PLACES = Decimal('0.01')


class ScoreBreakdown:
    """Validated scores for one subject plus the derived total, letter and remark."""

    def __init__(self, ca_score, exam_score, total_score, grade_letter, remark):
        self.ca_score = ca_score
        self.exam_score = exam_score
        self.total_score = total_score
        self.grade_letter = grade_letter
        self.remark = remark

    @property
    def is_gradable(self):
        return self.total_score is not None

    def __repr__(self):
        return (
            f"ScoreBreakdown(ca={self.ca_score}, exam={self.exam_score}, "
            f"total={self.total_score}, letter={self.grade_letter!r})"
        )


def round_score(value):
    """Round to two decimal places, half-up (77.125 -> 77.13)."""
    if value is None:
        return None
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_decimal(value, field):
    """Coerce a user-supplied score to Decimal, keeping None as None."""
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", kind=ValidationError.INVALID_FIELD, field=field)
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", kind=ValidationError.INVALID_FIELD, field=field)
    if not number.is_finite():
        raise ValidationError(f"{field} must be a number", kind=ValidationError.INVALID_FIELD, field=field)
    return number


def _check_bounds(value, maximum, field):
    if value is None:
        return None
    if value < 0 or value > maximum:
        raise ValidationError(
            f"{field} must be between 0 and {maximum}, got {value}",
            kind=ValidationError.OUT_OF_RANGE,
            field=field,
        )
    return round_score(value)


def get_grading_scale():
    """
    Return the configured grading scale, highest band first.

    Raises:
        ImproperlyConfigured: if bands are not strictly descending or the
            lowest band does not start at zero.
    """
    scale = config.GRADING_SCALE
    if not scale:
        raise ImproperlyConfigured('GRADEBOOK_GRADING_SCALE must define at least one band')

    previous = None
    for band in scale:
        minimum = Decimal(str(band['min']))
        if previous is not None and minimum >= previous:
            raise ImproperlyConfigured(
                'GRADEBOOK_GRADING_SCALE bands must be ordered by descending minimum'
            )
        previous = minimum
    if previous != 0:
        raise ImproperlyConfigured('The lowest GRADEBOOK_GRADING_SCALE band must start at 0')
    return scale


def _band_for(score):
    if score is None:
        return None
    score = Decimal(str(score))
    if score < 0:
        return None
    for band in get_grading_scale():
        if score >= Decimal(str(band['min'])):
            return band
    return None


def grade_letter_for(score):
    """Letter grade for a subject total or an overall average (None -> '')."""
    band = _band_for(score)
    return band['grade'] if band else ''


def remark_for(score):
    """Interpretation for a score (e.g. 'Very Good'); '' when there is no score."""
    band = _band_for(score)
    return band['remark'] if band else ''


def overall_remark_for(average):
    """Remark for a student's overall average."""
    return remark_for(average) or config.NO_GRADES_REMARK


def score_for(ca_score, exam_score):
    """
    Validate a (continuous assessment, exam) pair and grade it.

    Args:
        ca_score: CA score, 0 to CA_MAX_SCORE, or None if not yet recorded
        exam_score: Exam score, 0 to EXAM_MAX_SCORE, or None

    Returns:
        ScoreBreakdown: total and letter are only set when both scores exist

    Raises:
        ValidationError: kind OUT_OF_RANGE for bound violations,
            INVALID_FIELD for values that are not numbers
    """
    ca = _check_bounds(to_decimal(ca_score, 'ca_score'), Decimal(str(config.CA_MAX_SCORE)), 'ca_score')
    exam = _check_bounds(
        to_decimal(exam_score, 'exam_score'), Decimal(str(config.EXAM_MAX_SCORE)), 'exam_score'
    )

    if ca is None or exam is None:
        # Partially scored subjects are not gradable yet
        return ScoreBreakdown(ca, exam, None, '', '')

    total = ca + exam
    return ScoreBreakdown(ca, exam, total, grade_letter_for(total), remark_for(total))

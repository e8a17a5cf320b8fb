"""
Class ranking and cohort statistics.

Positions use standard competition ranking: 90, 80, 80, 60 -> 1, 2, 2, 4.
Results without an average are unranked and left out of the statistics.
"""
import logging
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from . import config
from .models import ClassResultStatistics, Result
from .scoring import round_score

logger = logging.getLogger(__name__)


class CohortStatistics:
    """Class-wide numbers produced by a ranking pass."""

    def __init__(self, highest_score=None, lowest_score=None, class_average=None, total_students=0):
        self.highest_score = highest_score
        self.lowest_score = lowest_score
        self.class_average = class_average
        self.total_students = total_students

    def to_dict(self):
        return {
            'highest_score': str(self.highest_score) if self.highest_score is not None else None,
            'lowest_score': str(self.lowest_score) if self.lowest_score is not None else None,
            'class_average': str(self.class_average) if self.class_average is not None else None,
            'total_students': self.total_students,
        }

    def __eq__(self, other):
        if not isinstance(other, CohortStatistics):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"CohortStatistics({self.to_dict()})"


def assign_positions(entries):
    """
    Rank (key, average) pairs.

    Args:
        entries: iterable of (key, average) where average may be None

    Returns:
        dict mapping key -> position (None for entries without an average)
    """
    entries = list(entries)
    ranked = sorted(
        ((key, average) for key, average in entries if average is not None),
        key=lambda entry: entry[1],
        reverse=True,
    )
    positions = {key: None for key, average in entries if average is None}

    position = 0
    last_value = None
    for i, (key, average) in enumerate(ranked, 1):
        if average != last_value:
            position = i
        positions[key] = position
        last_value = average
    return positions


def compute_statistics(averages, total_students):
    """Highest, lowest and mean of the non-null averages."""
    values = [Decimal(value) for value in averages if value is not None]
    if not values:
        return CohortStatistics(total_students=total_students)
    return CohortStatistics(
        highest_score=round_score(max(values)),
        lowest_score=round_score(min(values)),
        class_average=round_score(sum(values, Decimal('0')) / len(values)),
        total_students=total_students,
    )


def rank(class_obj, term, academic_session):
    """
    Recompute positions and statistics for every Result in a cohort.

    Runs in one transaction with the cohort statistics row locked, so two
    ranking passes for the same cohort never interleave.

    Returns:
        CohortStatistics
    """
    with transaction.atomic():
        marker, _ = ClassResultStatistics.objects.select_for_update().get_or_create(
            class_assigned=class_obj,
            term=term,
            academic_session=academic_session,
        )

        results = list(
            Result.objects.select_for_update().filter(
                class_assigned=class_obj,
                term=term,
                academic_session=academic_session,
            ).order_by('pk')
        )

        positions = assign_positions((result.pk, result.average_score) for result in results)
        for result in results:
            result.position = positions[result.pk]

        Result.objects.bulk_update(
            results,
            ['position'],
            batch_size=config.BULK_UPDATE_BATCH_SIZE
        )

        statistics = compute_statistics(
            [result.average_score for result in results],
            total_students=len(results),
        )
        marker.highest_score = statistics.highest_score
        marker.lowest_score = statistics.lowest_score
        marker.class_average = statistics.class_average
        marker.total_students = statistics.total_students
        marker.ranked_at = timezone.now()
        marker.save()

    logger.info(
        f"Ranked {len(results)} result(s) in {class_obj} for {term}: "
        f"class average {statistics.class_average}"
    )
    return statistics

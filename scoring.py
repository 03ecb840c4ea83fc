"""Result percentages and ranking among the results of one exam."""


def compute_percentage(score, total_marks):
    """score / total_marks * 100, not clamped to 100."""
    if total_marks is None or total_marks <= 0:
        raise ValueError('total_marks must be positive')
    return float(score) / float(total_marks) * 100.0


def rank_scores(scores):
    """Rank for every distinct score: 1 + number of strictly greater scores.

    Equal scores share a rank, e.g. [90, 80, 80, 70] -> {90: 1, 80: 2, 70: 4}.
    """
    ordered = sorted(scores, reverse=True)
    ranks = {}
    for i, score in enumerate(ordered):
        ranks.setdefault(score, i + 1)
    return ranks


def rank_results(results):
    """Map result id -> (rank, total_participants) for one exam's results."""
    ranks = rank_scores([r.score for r in results])
    total = len(results)
    return {r.id: (ranks[r.score], total) for r in results}


def average_percentage(results):
    if not results:
        return 0.0
    return sum(r.percentage for r in results) / len(results)


def top_performers(results, limit=10):
    return sorted(results, key=lambda r: (-r.score, r.id))[:limit]

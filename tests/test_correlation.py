from datetime import timedelta

from strava_overlay.correlation import find_closest, synchronize

from conftest import LOCAL_START, make_activity, make_point


def test_find_closest_picks_smallest_difference() -> None:
    points = [make_point(0), make_point(10)]

    closest = find_closest(points, LOCAL_START + timedelta(seconds=4))

    assert closest is points[0]


def test_find_closest_tie_returns_earliest() -> None:
    points = [make_point(0), make_point(10)]

    closest = find_closest(points, LOCAL_START + timedelta(seconds=5))

    assert closest is points[0]


def test_find_closest_ignores_points_without_coordinates() -> None:
    points = [make_point(4, latlng=None), make_point(10)]

    closest = find_closest(points, LOCAL_START + timedelta(seconds=4))

    assert closest is points[1]


def test_find_closest_returns_none_without_located_points() -> None:
    points = [make_point(0, latlng=None)]

    assert find_closest(points, LOCAL_START) is None
    assert find_closest([], LOCAL_START) is None


def test_synchronize_upper_bound_is_inclusive() -> None:
    activity = make_activity(elapsed_s=3600)
    points = [make_point(-1), make_point(0), make_point(1800), make_point(3600), make_point(3601)]

    synced = synchronize(points, activity.reference_start, activity.elapsed_time_s)

    assert synced == points[1:4]


def test_synchronize_empty_when_video_outside_track() -> None:
    points = [make_point(0), make_point(1)]

    assert synchronize(points, LOCAL_START + timedelta(hours=2), 60) == []


def test_naive_target_is_read_as_local_wall_clock() -> None:
    points = [make_point(0), make_point(10)]
    naive = (LOCAL_START + timedelta(seconds=9)).replace(tzinfo=None)

    assert find_closest(points, naive) is points[1]
    assert synchronize(points, naive, 5) == [points[1]]

import pytest

from orbslam_core.descriptors import KeyPoint
from orbslam_core.frame_drawer import FrameDrawer, TrackingState, status_text


def test_status_text_fixed_messages():
    assert status_text(TrackingState.NO_IMAGES_YET, False, 0, 0, 0, 0) == " WAITING FOR IMAGES"
    assert status_text(TrackingState.NOT_INITIALIZED, False, 0, 0, 0, 0) == " TRYING TO INITIALIZE "
    assert status_text(TrackingState.LOST, False, 0, 0, 0, 0) == " TRACK LOST. TRYING TO RELOCALIZE "
    assert status_text(-1, False, 0, 0, 0, 0) == " LOADING ORB VOCABULARY. PLEASE WAIT..."


def test_status_text_slam_mode():
    assert status_text(TrackingState.OK, False, 3, 10, 5, 0) == "SLAM MODE |  KFs: 3, MPs: 10, Matches: 5"


def test_status_text_localization_with_vo():
    text = status_text(TrackingState.OK, True, 3, 10, 5, 2)
    assert text == "LOCALIZATION | KFs: 3, MPs: 10, Matches: 5, + VO matches: 2"


def test_status_text_rejects_unknown_state():
    with pytest.raises(ValueError):
        status_text(7, False, 0, 0, 0, 0)


def test_initial_draw_moves_to_waiting():
    drawer = FrameDrawer()
    first = drawer.draw()
    assert first.state is TrackingState.SYSTEM_NOT_READY
    assert first.text == " LOADING ORB VOCABULARY. PLEASE WAIT..."
    second = drawer.draw()
    assert second.state is TrackingState.NO_IMAGES_YET
    assert second.text == " WAITING FOR IMAGES"


def test_tracking_counts_map_and_vo_matches():
    keys = [KeyPoint(10, 10), KeyPoint(20, 20), KeyPoint(30, 30), KeyPoint(40, 40)]
    drawer = FrameDrawer()
    drawer.update(TrackingState.OK, keys, observations=[3, 0, None, 2],
                  outliers=[False, False, False, True])
    overlay = drawer.draw(4, 100)
    assert overlay.tracked == 1
    assert overlay.tracked_vo == 1
    assert overlay.map_boxes == [(5.0, 5.0, 15.0, 15.0)]
    assert len(overlay.vo_boxes) == 1
    assert overlay.text == "SLAM MODE |  KFs: 4, MPs: 100, Matches: 1, + VO matches: 1"


def test_initialization_lines_follow_matches():
    reference = [KeyPoint(1, 1), KeyPoint(2, 2), KeyPoint(3, 3)]
    current = [KeyPoint(5, 5), KeyPoint(6, 6)]
    drawer = FrameDrawer()
    drawer.update(TrackingState.NOT_INITIALIZED, current,
                  initial_keys=reference, initial_matches=[1, -1, 0])
    overlay = drawer.draw()
    assert overlay.match_lines == [((1, 1), (6, 6)), ((3, 3), (5, 5))]
    assert overlay.map_boxes == []


def test_lost_state_has_no_features():
    drawer = FrameDrawer()
    drawer.update(TrackingState.LOST, [KeyPoint(1, 1)])
    overlay = drawer.draw()
    assert overlay.state is TrackingState.LOST
    assert overlay.map_boxes == [] and overlay.match_lines == []


def test_mismatched_observations_raise():
    drawer = FrameDrawer()
    with pytest.raises(ValueError):
        drawer.update(TrackingState.OK, [KeyPoint(1, 1)], observations=[1, 2])
import numpy as np
from pytest import raises

from tandem.model.events import NumericEventList


def test_from_values_and_times():
    event_list = NumericEventList.from_values_and_times([30001, 3001], [0.0, 0.1])
    assert event_list.event_count() == 2
    assert np.array_equal(event_list.get_times(), [0.0, 0.1])
    assert np.array_equal(event_list.get_values(), [30001, 3001])

    with raises(ValueError):
        NumericEventList.from_values_and_times([30001, 3001], [0.0])


def test_empty():
    event_list = NumericEventList.empty()
    assert event_list.event_count() == 0
    assert event_list == NumericEventList(np.empty([0, 2]))
    assert event_list.is_sorted()


def test_get_times_of():
    event_list = NumericEventList(np.array([[0.0, 1], [0.5, 2], [1.0, 1]]))
    assert np.array_equal(event_list.get_times_of(1), [0.0, 1.0])
    assert event_list.get_times_of(3).size == 0


def test_is_sorted():
    assert NumericEventList(np.array([[0.0, 1], [0.0, 2], [1.0, 1]])).is_sorted()
    assert not NumericEventList(np.array([[1.0, 1], [0.0, 2]])).is_sorted()


def test_append():
    event_list = NumericEventList(np.array([[0.0, 1]]))
    event_list.append(NumericEventList(np.array([[1.0, 2], [2.0, 3]])))
    assert event_list == NumericEventList(np.array([[0.0, 1], [1.0, 2], [2.0, 3]]))

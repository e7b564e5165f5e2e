from taskstream.client.subscriptions import SubscriptionRegistry


def _cb(name, sink):
    def callback(frame):
        sink.append((name, frame))

    return callback


def test_first_add_creates_entry():
    registry = SubscriptionRegistry()
    sink = []
    first = _cb("first", sink)
    second = _cb("second", sink)

    assert registry.add("T1", first) is True
    assert registry.add("T1", second) is False
    assert registry.callbacks("T1") == (first, second)
    assert "T1" in registry
    assert len(registry) == 1


def test_duplicate_callback_is_registered_once():
    registry = SubscriptionRegistry()
    callback = _cb("only", [])
    registry.add("T1", callback)
    registry.add("T1", callback)
    assert registry.callbacks("T1") == (callback,)


def test_equal_bound_methods_are_deduplicated():
    registry = SubscriptionRegistry()
    sink = []
    registry.add("T1", sink.append)
    registry.add("T1", sink.append)
    assert len(registry.callbacks("T1")) == 1
    assert registry.remove("T1", sink.append) is True
    assert "T1" not in registry


def test_entry_removed_with_last_callback():
    registry = SubscriptionRegistry()
    a = _cb("a", [])
    b = _cb("b", [])
    registry.add("T1", a)
    registry.add("T1", b)

    assert registry.remove("T1", a) is False
    assert "T1" in registry
    assert registry.remove("T1", b) is True
    assert "T1" not in registry
    assert registry.callbacks("T1") == ()


def test_remove_unknown_is_noop():
    registry = SubscriptionRegistry()
    a = _cb("a", [])
    assert registry.remove("missing", a) is False
    registry.add("T1", a)
    assert registry.remove("T1", _cb("other", [])) is False
    assert registry.callbacks("T1") == (a,)


def test_task_ids_iteration_and_clear():
    registry = SubscriptionRegistry()
    registry.add("T1", _cb("a", []))
    registry.add("T2", _cb("b", []))
    assert registry.task_ids() == ("T1", "T2")
    assert list(registry) == ["T1", "T2"]
    registry.clear()
    assert len(registry) == 0

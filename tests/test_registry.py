from pipeweave.registry import Registry


def _ctor_a(config):
    return ("a", config)


def _ctor_b(config):
    return ("b", config)


def test_registered_constructor_is_returned():
    registry = Registry()
    registry.register_section("a", _ctor_a)
    assert registry.get_constructor("a") is _ctor_a


def test_unknown_name_gives_none():
    assert Registry().get_constructor("missing") is None


def test_register_replaces_existing():
    registry = Registry()
    registry.register_section("a", _ctor_a)
    registry.register_section("a", _ctor_b)
    assert registry.get_constructor("a") is _ctor_b


def test_unregister_removes_only_that_name():
    registry = Registry()
    registry.register_section("a", _ctor_a)
    registry.register_section("b", _ctor_b)
    registry.unregister_section("a")
    registry.unregister_section("never-registered")
    assert registry.get_constructor("a") is None
    assert registry.get_constructor("b") is _ctor_b


def test_constructor_is_callable_with_config():
    registry = Registry()
    registry.register_section("a", _ctor_a)
    config = {"name": "a"}
    assert registry.get_constructor("a")(config) == ("a", config)
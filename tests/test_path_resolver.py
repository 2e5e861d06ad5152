from services.path_resolver import resolve, split_path


def test_resolve_nested_path():
    tree = {"media": {"images": ["a.jpg", "b.jpg"]}}
    assert resolve(tree, "media.images") == ["a.jpg", "b.jpg"]


def test_resolve_falls_back_to_case_insensitive_key():
    assert resolve({"a": {"B": 1}}, "a.b") == 1
    assert resolve({"Images": [1, 2]}, "images") == [1, 2]


def test_exact_key_wins_over_case_insensitive_match():
    tree = {"price": "exact", "Price": "other"}
    assert resolve(tree, "Price") == "other"
    assert resolve(tree, "price") == "exact"


def test_missing_intermediate_returns_none():
    assert resolve({"a": 1}, "a.b") is None
    assert resolve({"a": {"b": None}}, "a.b.c") is None
    assert resolve({}, "anything") is None


def test_empty_path_means_not_mapped():
    assert resolve({"a": 1}, "") is None
    assert resolve({"a": 1}, None) is None
    assert resolve(None, "a") is None


def test_list_index_segment():
    tree = {"photos": [{"url": "first"}, {"url": "second"}]}
    assert resolve(tree, "photos.1.url") == "second"
    assert resolve(tree, "photos.5.url") is None


def test_falsy_values_are_returned():
    tree = {"bedrooms": 0, "garden": False}
    assert resolve(tree, "bedrooms") == 0
    assert resolve(tree, "garden") is False


def test_split_path_ignores_blank_segments():
    assert split_path(" a . b ..c ") == ["a", "b", "c"]
    assert split_path("") == []

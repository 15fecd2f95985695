from modelops.cli.common.progress import _display_model_label, _truncate


def test_display_model_label_aligns_wave_column():
    labels = {
        "orders": _display_model_label("orders", 1, name_width=12),
        "revenue_daily": _display_model_label("revenue_daily", 2, name_width=13),
    }

    assert labels["orders"].startswith("orders")
    assert labels["revenue_daily"].endswith("(wave: 2)")
    assert _display_model_label("a", 1, name_width=10).index("(wave: ") == 12


def test_display_model_label_without_wave_is_just_the_name():
    assert _display_model_label("orders", None, name_width=10) == "orders"


def test_truncate_uses_ascii_ellipsis():
    assert _truncate("abcdefghij", 6) == "abc..."
    assert _truncate("abc", 6) == "abc"

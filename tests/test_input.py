"""Unit tests for terminal key handling."""

from torjolan.input import key_action


def test_key_actions():
    """Test terminal keys map to remote commands and local actions."""
    assert key_action(" ") == "toggle"
    assert key_action("P") == "toggle"
    assert key_action("+") == "like"
    assert key_action("-") == "dislike"
    assert key_action("left") == "seek_back"
    assert key_action("right") == "seek_forward"
    assert key_action("x") is None
    assert key_action(None) is None

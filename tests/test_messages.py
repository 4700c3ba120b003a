import pytest

from tcpwechat.messages import (
    DEFAULT_REFUSAL_REASON,
    ChatMessage,
    MessageFormatError,
    PrivateChatRequest,
    PrivateMessage,
    encode_chat_message,
    encode_private_request,
    encode_private_response,
    parse_chat_message,
    parse_private_message,
    parse_private_request,
    parse_private_response,
    parse_user_list,
)


def test_chat_message_round_trip():
    data = encode_chat_message("alice", "hello there")
    assert parse_chat_message(data) == ChatMessage("alice", "hello there")


def test_chat_message_wire_form():
    assert encode_chat_message("alice", "hi") == b"alice|hi"


def test_chat_message_keeps_pipes_in_text():
    message = parse_chat_message(b"bob|a|b|c")
    assert message.sender == "bob"
    assert message.text == "a|b|c"


def test_chat_message_accepts_str_and_unicode():
    data = encode_chat_message("小明", "你好")
    assert parse_chat_message(data.decode("utf-8")) == ChatMessage("小明", "你好")


def test_chat_message_without_separator_is_rejected():
    with pytest.raises(MessageFormatError):
        parse_chat_message(b"no separator")


def test_private_request_round_trip():
    data = encode_private_request("alice", "bob")
    assert data == b"alice|bob"
    assert parse_private_request(data) == PrivateChatRequest("alice", "bob")


def test_private_request_too_short():
    with pytest.raises(MessageFormatError):
        parse_private_request(b"alice")


def test_agree_response():
    data = encode_private_response("bob", "alice", True)
    assert data == b"bob|alice|agree"
    response = parse_private_response(data)
    assert response.receiver == "bob"
    assert response.requester == "alice"
    assert response.agreed
    assert not response.refused


def test_refuse_response_uses_default_reason():
    data = encode_private_response("bob", "alice", False)
    assert data == "bob|alice|refuse:暂时不便".encode("utf-8")
    response = parse_private_response(data)
    assert response.refused
    assert not response.agreed
    assert response.reason == DEFAULT_REFUSAL_REASON


def test_refuse_response_custom_reason():
    response = parse_private_response(
        encode_private_response("bob", "alice", False, "busy")
    )
    assert response.refused
    assert response.reason == "busy"


def test_reason_without_colon_is_whole_response():
    response = parse_private_response(b"bob|alice|refuse")
    assert response.refused
    assert response.reason == "refuse"


def test_unknown_response_is_neither():
    response = parse_private_response(b"bob|alice|maybe")
    assert not response.agreed
    assert not response.refused


def test_private_response_too_short():
    with pytest.raises(MessageFormatError):
        parse_private_response(b"bob|alice")


def test_private_message_keeps_pipes():
    assert parse_private_message(b"alice|bob|x|y") == PrivateMessage("alice", "bob", "x|y")


def test_private_message_too_short():
    with pytest.raises(MessageFormatError):
        parse_private_message(b"alice|bob")


def test_user_list_skips_empty_parts():
    assert parse_user_list(b"alice,,bob,") == ["alice", "bob"]


def test_empty_user_list():
    assert parse_user_list(b"") == []


def test_user_list_unicode():
    names = ["小明", "alice"]
    assert parse_user_list(",".join(names).encode("utf-8")) == names
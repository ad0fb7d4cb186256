import pytest

from phrasegate.phrase import (
    NUM_WORDS, SECRET_PHRASE, USERNAME_INVALID, USERNAME_INVALID_HINT, USERNAME_REQUIRED,
    check_phrase, classify_word, is_valid_username, join_phrase, phrase_preview, username_error,
    username_state,
)


def test_secret_phrase_has_twelve_words():
    assert len(SECRET_PHRASE) == NUM_WORDS == 12
    assert all(w == w.lower() for w in SECRET_PHRASE)


@pytest.mark.parametrize("index", range(12))
def test_classify_correct_word_at_every_position(index):
    word = SECRET_PHRASE[index]
    assert classify_word(word, index) == "correct"
    assert classify_word(f"  {word.upper()}  ", index) == "correct"


@pytest.mark.parametrize("text", ["", "   ", "\t\n"])
def test_classify_blank_is_empty(text):
    assert classify_word(text, 0) == "empty"


def test_classify_wrong_or_misplaced_word_is_incorrect():
    assert classify_word("hamster", 0) == "incorrect"
    assert classify_word("steelx", 0) == "incorrect"
    assert classify_word("st eel", 0) == "incorrect"


def test_classify_is_idempotent():
    for text in ["steel", "nope", ""]:
        assert classify_word(text, 0) == classify_word(text, 0)


def test_classify_rejects_out_of_range_index():
    with pytest.raises(IndexError):
        classify_word("steel", 12)


@pytest.mark.parametrize("name", ["ab", "user.name", "user_name-1", "player#1234", "A" * 32, "x" * 32 + "#0001"])
def test_valid_usernames(name):
    assert is_valid_username(name)


@pytest.mark.parametrize("name", ["", "a", "A" * 33, "has space", "user#123", "user#12345", "émile", "user#abcd", "name\n"])
def test_invalid_usernames(name):
    assert not is_valid_username(name)


def test_username_messages_differ_between_blur_and_submit():
    assert username_error("") == USERNAME_REQUIRED
    assert username_error("", on_blur=True) is None
    assert username_error("a") == USERNAME_INVALID
    assert username_error("a", on_blur=True) == USERNAME_INVALID_HINT
    assert username_error("player#1234") is None
    assert username_state("  ") == "empty"
    assert username_state("bad name") == "invalid"
    assert username_state(" good ") == "valid"


def test_check_phrase_all_correct():
    check = check_phrase(list(SECRET_PHRASE), " player ")
    assert check.is_valid
    assert check.error_count == 0
    assert check.username == "player"
    assert check.message is None


def test_check_phrase_counts_mismatches():
    words = list(SECRET_PHRASE)
    words[1] = "gerbil"
    words[5] = ""
    check = check_phrase(words, "player")
    assert not check.is_valid
    assert check.error_count == 2
    assert check.message == "2 word(s) incorrect. Please check and try again."


def test_check_phrase_empty_username_uses_generic_prompt():
    check = check_phrase(list(SECRET_PHRASE), "")
    assert not check.is_valid
    assert check.error_count == 0
    assert check.username_error == USERNAME_REQUIRED
    assert check.message == "Please enter a Discord username and correct phrase."


def test_check_phrase_invalid_username_is_rejected():
    check = check_phrase(list(SECRET_PHRASE), "x")
    assert not check.is_valid
    assert check.username_error == USERNAME_INVALID


def test_check_phrase_requires_twelve_words():
    with pytest.raises(ValueError):
        check_phrase(["steel"], "player")


def test_join_and_preview():
    phrase = join_phrase([w.upper() + " " for w in SECRET_PHRASE])
    assert phrase == " ".join(SECRET_PHRASE)
    assert phrase_preview(phrase) == "steel hamster casual..."

import pytest

from cardauth.config import Config, ItemType
from cardauth.parser import (
    ConfigParseError,
    Parser,
    TokenType,
    parse_file,
    parse_string,
    tokenize,
)


def test_value_list():
    config = Config()
    parse_string(config, "key = v1, v2;")
    assert config.root.find_list("key") == ["v1", "v2"]


def test_named_block_lookup():
    config = Config()
    parse_string(config, "pam_pkcs11 {\n mapper ldap { module = internal; }\n}\n")
    root = config.find_block("pam_pkcs11")
    assert root is not None
    assert root.name == [""]
    mapper = config.find_blocks("mapper", "ldap", root)[0]
    assert mapper.get_str("module") == "internal"
    assert mapper.parent is root


def test_quoted_value_strips_quotes():
    config = Config()
    parse_string(config, 'msg = "hello world";')
    assert config.root.get_str("msg") == "hello world"


def test_repeated_key_extends_list():
    config = Config()
    parse_string(config, "a = x;\na = y;")
    assert config.root.find_list("a") == ["x", "y"]
    assert sum(1 for i in config.root.items if i.type is ItemType.VALUE) == 1


def test_keys_are_case_insensitive():
    config = Config()
    parse_string(config, "Foo = 1;")
    assert config.root.get_int("foo") == 1


def test_comment_is_kept():
    config = Config()
    parse_string(config, "# note\na = 1;\n")
    first = config.root.items[0]
    assert first.type is ItemType.COMMENT
    assert first.value == "# note"


def test_empty_line_becomes_empty_comment():
    config = Config()
    parse_string(config, "a = 1;\n\nb = 2;")
    comments = [i for i in config.root.items if i.type is ItemType.COMMENT]
    assert len(comments) == 1
    assert comments[0].value is None
    assert config.root.get_str("b") == "2"


def test_unmatched_closing_brace_is_error():
    config = Config()
    with pytest.raises(ConfigParseError, match="missing matching '{'") as info:
        parse_string(config, "\n\n}")
    assert info.value.line == 3
    assert "missing matching '{'" in config.errmsg


def test_equals_without_key_is_error():
    with pytest.raises(ConfigParseError, match="not expecting '='"):
        parse_string(Config(), "= x;")


def test_second_name_without_comma_is_error():
    with pytest.raises(ConfigParseError, match="not expecting 'c'"):
        parse_string(Config(), "a b c;")


def test_error_stops_parsing():
    config = Config()
    with pytest.raises(ConfigParseError):
        parse_string(config, "} a = b;")
    assert config.root.find_list("a") is None


def test_missing_semicolon_warns_and_continues():
    config = Config()
    parser = parse_string(config, "a = b\nc = d;")
    assert config.root.find_list("a") == ["b"]
    assert config.root.find_list("c") == ["d"]
    assert parser.warnings
    assert "missing ';'" in parser.warnings[0]


def test_closing_brace_after_value_warns():
    config = Config()
    parser = parse_string(config, "blk { a = b }")
    assert config.find_block("blk").get_str("a") == "b"
    assert any("missing ';'" in w for w in parser.warnings)


def test_unterminated_quote_warns():
    config = Config()
    parser = parse_string(config, 'a = "abc')
    assert config.root.get_str("a") == "abc"
    assert any("missing '\"'" in w for w in parser.warnings)


def test_parse_appends_to_existing_root():
    config = Config()
    config.root.put_str("a", "first")
    parse_string(config, "a = second;")
    assert config.root.find_list("a") == ["first", "second"]


def test_tokenize_sequence():
    tokens = list(tokenize('a = "x y"; # c\n'))
    assert tokens == [
        (TokenType.STRING, "a"),
        (TokenType.PUNCT, "="),
        (TokenType.STRING, '"x y"'),
        (TokenType.PUNCT, ";"),
        (TokenType.COMMENT, "# c"),
        (TokenType.NEWLINE, None),
    ]


def test_tokenize_bare_word_keeps_braces():
    assert list(tokenize("a{")) == [(TokenType.STRING, "a{")]


def test_parse_token_directly():
    config = Config()
    parser = Parser(config)
    for token_type, token in [
        (TokenType.STRING, "k"),
        (TokenType.PUNCT, "="),
        (TokenType.STRING, "v"),
        (TokenType.PUNCT, ";"),
    ]:
        parser.parse_token(token_type, token)
    assert config.root.find_list("k") == ["v"]
    assert parser.state == 0
    assert not parser.error


def test_parse_token_error_flag():
    parser = Parser(Config())
    parser.parse_token(TokenType.PUNCT, "{")
    assert parser.error
    assert "not expecting '{'" in parser.message


def test_parse_file(tmp_path):
    path = tmp_path / "app.conf"
    path.write_text("card_eventmgr {\n debug = true;\n timeout = 0x10;\n}\n")
    config = Config(str(path))
    parse_file(config)
    block = config.find_block("card_eventmgr")
    assert block.get_bool("debug") is True
    assert block.get_int("timeout") == 16


def test_parse_file_missing(tmp_path):
    config = Config(str(tmp_path / "missing.conf"))
    with pytest.raises(ConfigParseError, match="Unable to open"):
        parse_file(config)
    assert config.errmsg.startswith("Unable to open")
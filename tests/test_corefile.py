from coreresolver.corefile import (
    PluginConfig,
    Token,
    TokenKind,
    lex,
    parse_corefile,
    parse_tokens,
)


def test_lex_basic_block():
    tokens = lex(". {\n  log\n}")
    assert [t.kind for t in tokens] == [
        TokenKind.TEXT,
        TokenKind.OPEN_BRACE,
        TokenKind.NEWLINE,
        TokenKind.TEXT,
        TokenKind.NEWLINE,
        TokenKind.CLOSE_BRACE,
    ]
    assert tokens[0].text == "."
    assert tokens[3].text == "log"


def test_lex_drops_comments_but_keeps_newline():
    tokens = lex("log # a comment here\n")
    assert tokens == [Token(TokenKind.TEXT, "log"), Token(TokenKind.NEWLINE)]


def test_lex_quoted_string_keeps_spaces():
    tokens = lex('consolidate 5m "some error text"')
    assert tokens[-1] == Token(TokenKind.TEXT, "some error text")


def test_lex_word_stops_at_brace():
    tokens = lex("forward{")
    assert tokens == [Token(TokenKind.TEXT, "forward"), Token(TokenKind.OPEN_BRACE)]


def test_parse_plugin_arguments():
    zones = parse_corefile(".:1053 {\n forward . 8.8.8.8 1.1.1.1\n cache\n}\n")
    assert len(zones) == 1
    assert zones[0].name == ".:1053"
    assert zones[0].plugins == [
        PluginConfig("forward", [".", "8.8.8.8", "1.1.1.1"]),
        PluginConfig("cache"),
    ]


def test_parse_nested_block():
    zones = parse_corefile(". {\n forward . 9.9.9.9 {\n  policy sequential\n  force_tcp\n }\n}\n")
    forward = zones[0].plugins[0]
    assert forward.name == "forward"
    assert forward.block == [
        PluginConfig("policy", ["sequential"]),
        PluginConfig("force_tcp"),
    ]


def test_several_zone_names_share_a_block_by_copy():
    zones = parse_corefile("a.example b.example {\n log\n}\n")
    assert [z.name for z in zones] == ["a.example", "b.example"]
    assert zones[0].plugins == zones[1].plugins
    zones[0].plugins[0].args.append("x")
    assert zones[1].plugins[0].args == []


def test_newline_clears_pending_zone_names():
    zones = parse_corefile("orphan\n. {\n log\n}\n")
    assert [z.name for z in zones] == ["."]


def test_unterminated_block_keeps_parsed_plugins():
    zones = parse_corefile(". {\n log\n whoami")
    assert [p.name for p in zones[0].plugins] == ["log", "whoami"]


def test_parse_tokens_without_brace_yields_nothing():
    assert parse_tokens(lex("just words here")) == []
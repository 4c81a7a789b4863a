import pytest

from xvsim.shell import (
    BackCmd,
    ExecCmd,
    ListCmd,
    PipeCmd,
    RedirCmd,
    RedirMode,
    ShellSyntaxError,
    gettoken,
    parsecmd,
    peek,
)


def test_gettoken_word_and_following_space():
    tok, start, stop, pos = gettoken("  ab cd", 0)
    assert tok == "a"
    assert "  ab cd"[start:stop] == "ab"
    assert pos == 5


def test_gettoken_append_symbol():
    tok, start, stop, pos = gettoken(">>x", 0)
    assert tok == "+"
    assert (start, stop, pos) == (0, 2, 2)


def test_gettoken_single_redirect_and_end():
    tok, _, _, pos = gettoken("> f", 0)
    assert tok == ">"
    assert gettoken("   ", 0)[0] == ""


def test_gettoken_word_stops_at_symbol():
    tok, start, stop, pos = gettoken("ls|wc", 0)
    assert tok == "a"
    assert "ls|wc"[start:stop] == "ls"
    assert gettoken("ls|wc", pos)[0] == "|"


def test_peek():
    assert peek("   |x", 0, "|") == (True, 3)
    assert peek("  x", 0, "|&") == (False, 2)
    assert peek("", 0, "") == (False, 0)


def test_simple_exec():
    assert parsecmd("echo hi there\n") == ExecCmd(["echo", "hi", "there"])


def test_empty_line():
    assert parsecmd("\n") == ExecCmd([])


def test_redirections_nest():
    cmd = parsecmd("cat < in > out")
    assert cmd == RedirCmd(
        RedirCmd(ExecCmd(["cat"]), "in", RedirMode.READ, 0),
        "out", RedirMode.WRITE, 1,
    )


def test_append_opens_like_write():
    assert parsecmd("echo x >> log") == parsecmd("echo x > log")


def test_redirection_before_args():
    cmd = parsecmd("< in cat -n")
    assert isinstance(cmd, RedirCmd)
    assert cmd.cmd == ExecCmd(["cat", "-n"])
    assert cmd.file == "in"


def test_pipe_is_right_associative():
    cmd = parsecmd("a | b | c")
    assert cmd == PipeCmd(ExecCmd(["a"]), PipeCmd(ExecCmd(["b"]), ExecCmd(["c"])))


def test_list_and_background():
    assert parsecmd("a ; b") == ListCmd(ExecCmd(["a"]), ExecCmd(["b"]))
    assert parsecmd("a & ; b") == ListCmd(BackCmd(ExecCmd(["a"])), ExecCmd(["b"]))
    assert parsecmd("a & &") == BackCmd(BackCmd(ExecCmd(["a"])))


def test_block_with_redirection():
    cmd = parsecmd("(a ; b) > out")
    assert cmd == RedirCmd(
        ListCmd(ExecCmd(["a"]), ExecCmd(["b"])), "out", RedirMode.WRITE, 1
    )


def test_background_then_word_is_leftover():
    with pytest.raises(ShellSyntaxError, match="leftovers"):
        parsecmd("a & b")


def test_unmatched_close_paren_is_leftover():
    with pytest.raises(ShellSyntaxError, match="leftovers"):
        parsecmd("echo )")


def test_missing_redirection_file():
    with pytest.raises(ShellSyntaxError, match="missing file"):
        parsecmd("echo >")


def test_missing_close_paren():
    with pytest.raises(ShellSyntaxError, match="missing \\)"):
        parsecmd("(echo hi")


def test_symbol_in_arguments():
    with pytest.raises(ShellSyntaxError, match="syntax"):
        parsecmd("echo (")


def test_argument_limit():
    nine = " ".join(["w"] * 9)
    assert parsecmd(nine) == ExecCmd(["w"] * 9)
    with pytest.raises(ShellSyntaxError, match="too many args"):
        parsecmd(nine + " w")


def test_nul_ends_the_line():
    assert parsecmd("ls\0garbage )") == ExecCmd(["ls"])
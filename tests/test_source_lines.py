from source_lines import brace_layout, indent_layout, strip_comment


def test_indent_layout_depths_and_comments():
    program = indent_layout("x = 1\nif x:\n    y = 2  # note\n\n")
    assert program[0].text == "x = 1"
    assert program[2].text == "y = 2"
    assert program[2].depth == 4
    assert program[3].is_blank
    assert program.indent_unit == 4
    assert program.body_depth(1) == 4
    # blank lines after a block belong to it
    assert program.block_end(2, 4) == len(program)


def test_indent_unit_follows_first_indented_line():
    program = indent_layout("if True:\n  a = 1\n  if a:\n    b = 2\nc = 3")
    assert program.indent_unit == 2
    assert program.block_end(1, 2) == 4
    assert program.next_code_line(4) == 4


def test_comment_marker_inside_string_is_kept():
    assert strip_comment('print("#1")  # c', "#") == 'print("#1")  '
    assert strip_comment('s = "a//b"; // tail', "//") == 's = "a//b"; '


def test_brace_layout_keeps_line_numbers_across_block_comments():
    program = brace_layout(
        "int main() {\n"
        "    /* block\n"
        "       comment */\n"
        "    int x = 1; // trailing\n"
        "}\n"
    )
    assert len(program) == 6
    assert program[0].depth == 0
    assert program[1].is_blank and program[2].is_blank
    assert program[3].text == "int x = 1;"
    assert program[3].number == 3
    assert program[3].depth == 1
    assert program[4].is_blank


def test_closing_brace_line_takes_outer_depth():
    program = brace_layout(
        "if (a) {\n"
        "    x = 1;\n"
        "} else {\n"
        "    x = 2;\n"
        "}\n"
    )
    assert program[2].text == "else {"
    assert program[2].depth == 0
    assert program[3].depth == 1
    assert program.block_end(1, 1) == 2


def test_preprocessor_lines_are_blank():
    program = brace_layout("#include <stdio.h>\n\nint main() {\n}\n")
    assert program[0].is_blank
    assert program.next_code_line(0) == 2

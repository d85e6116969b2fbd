import pytest

from c_tracer import CTracer
from config import TraceLimits
from trace_builtins import format_printf
from trace_types import StepBudgetExceeded


def run(code, **limits):
    return CTracer(TraceLimits(**limits)).run(code)


def kinds(steps):
    return [step.kind for step in steps]


def test_main_runs_after_top_level():
    steps = run(
        "#include <stdio.h>\n"
        "\n"
        "int main() {\n"
        "    int a = 10;\n"
        "    int b = 3;\n"
        "    printf(\"%d\\n\", a / b);\n"
        "    printf(\"%d\\n\", a % b);\n"
        "    return 0;\n"
        "}\n"
    )
    assert kinds(steps) == ["assignment", "assignment", "print", "print", "function_return"]
    assert [step.line for step in steps] == [3, 4, 5, 6, 7]
    assert steps[0].explanation == "a = 10"
    assert steps[-1].output == ["3", "1"]
    assert steps[-1].call_stack == []


def test_integer_division_truncates():
    steps = run(
        "int main() {\n"
        "    int q = -7 / 2;\n"
        "    int r = -7 % 2;\n"
        "    float avg = 7 / 2;\n"
        "    double d = 7.0 / 2;\n"
        "}\n"
    )
    assert steps[-1].variables == {"q": -3, "r": -1, "avg": 3.0, "d": 3.5}
    assert steps[2].explanation == "avg = 3.0"


def test_function_call_and_return():
    steps = run(
        "int add(int a, int b) {\n"
        "    return a + b;\n"
        "}\n"
        "\n"
        "int main() {\n"
        "    int s = add(2, 3);\n"
        "    printf(\"Sum: %d\\n\", s);\n"
        "    return 0;\n"
        "}\n"
    )
    assert kinds(steps) == ["define", "function_call", "function_return", "assignment", "print", "function_return"]
    assert steps[0].explanation == "Define function add"
    assert steps[1].explanation == "Call add(2, 3)"
    assert steps[1].line == 0
    assert steps[1].call_stack[0].function_name == "add"
    assert steps[1].call_stack[0].args == {"a": 2, "b": 3}
    assert steps[2].explanation == "Return 5"
    assert steps[3].variables == {"s": 5}
    assert steps[4].output == ["Sum: 5"]


def test_recursive_factorial():
    steps = run(
        "int factorial(int n);\n"
        "\n"
        "int main() {\n"
        "    int r = factorial(5);\n"
        "    printf(\"%d\\n\", r);\n"
        "    return 0;\n"
        "}\n"
        "\n"
        "int factorial(int n) {\n"
        "    if (n <= 1) {\n"
        "        return 1;\n"
        "    }\n"
        "    return n * factorial(n - 1);\n"
        "}\n"
    )
    calls = [step for step in steps if step.kind == "function_call"]
    assert [len(step.call_stack) for step in calls] == [1, 2, 3, 4, 5]
    assert all(step.line == 8 for step in calls)
    returns = [step.explanation for step in steps if step.kind == "function_return"]
    assert returns == ["Return 1", "Return 2", "Return 6", "Return 24", "Return 120", "Return 0"]
    assert steps[-1].output == ["120"]


def test_for_loop():
    steps = run(
        "int main() {\n"
        "    int sum = 0;\n"
        "    for (int i = 1; i <= 3; i++) {\n"
        "        sum += i;\n"
        "    }\n"
        "    printf(\"%d\\n\", sum);\n"
        "    return 0;\n"
        "}\n"
    )
    assert kinds(steps) == (
        ["assignment", "assignment", "loop_start"]
        + ["loop_check", "assignment", "assignment"] * 3
        + ["condition_false", "print", "function_return"]
    )
    assert steps[1].explanation == "i = 1"
    assert steps[2].explanation == "For loop: int i = 1; i <= 3; i++"
    assert steps[3].explanation == "i <= 3 → True (iteration 1)"
    assert steps[4].explanation == "sum += 1 → 1"
    assert steps[5].explanation == "i++ → 2"
    assert steps[-3].explanation == "i <= 3 → False, loop ended"
    assert steps[-1].output == ["6"]


def test_array_while_loop():
    steps = run(
        "int main() {\n"
        "    int arr[5] = {4, 2, 7};\n"
        "    int i = 0;\n"
        "    while (i < 5) {\n"
        "        arr[i] = arr[i] * 2;\n"
        "        i++;\n"
        "    }\n"
        "    return 0;\n"
        "}\n"
    )
    assert steps[0].explanation == "arr = {4, 2, 7, 0, 0}"
    assert steps[0].variables == {"arr": [4, 2, 7, 0, 0]}
    assert steps[-2].kind == "condition_false"
    assert steps[-1].variables == {"arr": [8, 4, 14, 0, 0], "i": 5}


def test_else_if_chain():
    steps = run(
        "int main() {\n"
        "    int x = 7;\n"
        "    if (x > 10) {\n"
        "        printf(\"big\\n\");\n"
        "    } else if (x > 5) {\n"
        "        printf(\"medium\\n\");\n"
        "    } else {\n"
        "        printf(\"small\\n\");\n"
        "    }\n"
        "    return 0;\n"
        "}\n"
    )
    assert kinds(steps) == ["assignment", "condition_false", "condition_true", "print", "function_return"]
    assert steps[2].line == 4
    assert steps[-1].output == ["medium"]


def test_single_statement_bodies():
    steps = run(
        "int main() {\n"
        "    int n = 4;\n"
        "    if (n % 2 == 0)\n"
        "        printf(\"even\\n\");\n"
        "    else\n"
        "        printf(\"odd\\n\");\n"
        "    while (n > 0) n--;\n"
        "    return 0;\n"
        "}\n"
    )
    assert kinds(steps) == (
        ["assignment", "condition_true", "print", "loop_start"]
        + ["loop_check", "assignment"] * 4
        + ["condition_false", "function_return"]
    )
    assert steps[5].explanation == "n-- → 3"
    assert steps[-1].output == ["even"]


def test_char_arrays_and_strings():
    steps = run(
        "int main() {\n"
        "    char word[] = \"cat\";\n"
        "    word[0] = 'b';\n"
        "    printf(\"%s has %d letters\\n\", word, strlen(word));\n"
        "    puts(word);\n"
        "}\n"
    )
    assert steps[0].explanation == 'word = "cat"'
    assert steps[1].variables == {"word": "bat"}
    assert steps[-1].output == ["bat has 3 letters", "bat"]


def test_several_statements_on_one_line():
    steps = run("int main() {\n    int a = 1; int b = a + 1; a++;\n}\n")
    assert kinds(steps) == ["assignment"] * 3
    assert {step.line for step in steps} == {1}
    assert steps[-1].variables == {"a": 2, "b": 2}


def test_globals_are_declared_first():
    steps = run(
        "int limit = 3;\n"
        "int main() {\n"
        "    int x = limit * 2;\n"
        "    return 0;\n"
        "}\n"
    )
    assert steps[0].variables == {"limit": 3}
    assert steps[1].variables == {"limit": 3, "x": 6}


def test_assignment_keeps_declared_type():
    steps = run(
        "int main() {\n"
        "    int n = 0;\n"
        "    float f = 0;\n"
        "    n = 7.9;\n"
        "    f = 2;\n"
        "    n += 2.5;\n"
        "}\n"
    )
    assert steps[-1].variables == {"n": 9, "f": 2.0}


def test_runaway_loop_is_truncated():
    steps = run("int main() {\n    int x = 0;\n    while (1) {\n        x++;\n    }\n    return 0;\n}\n")
    assert len(steps) == 403
    assert steps[-1].kind == "function_return"
    assert steps[-1].variables == {"x": 200}


def test_step_budget():
    with pytest.raises(StepBudgetExceeded, match="Max steps exceeded"):
        run("int main() {\n    int x = 0;\n" + "    x++;\n" * 30 + "}\n", max_steps=20)


def test_loop_stops_before_step_budget_runs_out():
    steps = run(
        "int main() {\n"
        "    int x = 0;\n"
        "    int y = 0;\n"
        "    while (1) {\n"
        "        x++;\n"
        "        y++;\n"
        "    }\n"
        "    printf(\"%d\\n\", x);\n"
        "}\n"
    )
    assert len(steps) <= 500
    assert steps[-1].kind == "print"
    x = steps[-1].variables["x"]
    assert 100 < x < 200
    assert steps[-1].output == [str(x)]


def test_for_loop_iteration_cap():
    steps = run(
        "int main() {\n"
        "    int s = 0;\n"
        "    for (int i = 0; i < 10; i++) s += i;\n"
        "}\n",
        max_loop_iterations=3,
    )
    assert kinds(steps).count("loop_check") == 3
    assert steps[-1].variables == {"s": 3, "i": 3}


def test_nested_single_statement_bodies():
    steps = run(
        "int main() {\n"
        "    int c = 0;\n"
        "    for (int i = 0; i < 3; i++)\n"
        "        if (i > 0)\n"
        "            c++;\n"
        "    printf(\"%d\\n\", c);\n"
        "}\n"
    )
    assert steps[-1].output == ["2"]
    assert [step.line for step in steps if step.kind == "print"] == [5]


def test_nested_single_statement_bodies_with_else():
    steps = run(
        "int main() {\n"
        "    int evens = 0;\n"
        "    int odds = 0;\n"
        "    for (int i = 0; i < 4; i++)\n"
        "        if (i % 2 == 0)\n"
        "            evens++;\n"
        "        else\n"
        "            odds++;\n"
        "    printf(\"%d %d\\n\", evens, odds);\n"
        "}\n"
    )
    assert steps[-1].output == ["2 2"]
    assert kinds(steps).count("loop_check") == 4


def test_one_line_if_else():
    steps = run(
        "int main() {\n"
        "    int x = 0;\n"
        "    if (x > 0) printf(\"pos\\n\"); else printf(\"neg\\n\");\n"
        "    x = 1;\n"
        "    if (x > 0) printf(\"pos\\n\"); else printf(\"neg\\n\");\n"
        "}\n"
    )
    assert kinds(steps) == ["assignment", "condition_false", "print", "assignment", "condition_true", "print"]
    assert steps[-1].output == ["neg", "pos"]


def test_one_line_else_if_chain():
    steps = run(
        "int main() {\n"
        "    int x = 1;\n"
        "    if (x > 5) puts(\"big\"); else if (x > 0) puts(\"small\"); else puts(\"none\");\n"
        "    if (x > 5) { puts(\"big\"); } else { puts(\"not big\"); }\n"
        "}\n"
    )
    assert kinds(steps) == ["assignment", "condition_false", "condition_true", "print", "condition_false", "print"]
    assert steps[-1].output == ["small", "not big"]


def test_deep_recursion_inside_nested_blocks():
    code = (
        "int f(int n) {\n"
        "    if (n > 0) {\n"
        "        while (1) {\n"
        "            for (int k = 1; k <= 1; k++) {\n"
        "                if (k == 1) {\n"
        "                    return f(n - 1) + 1;\n"
        "                }\n"
        "            }\n"
        "        }\n"
        "    }\n"
        "    return 0;\n"
        "}\n"
        "\n"
        "int main() {\n"
        "    printf(\"%d\\n\", f(400));\n"
        "    return 0;\n"
        "}\n"
    )
    with pytest.raises(StepBudgetExceeded, match="call depth"):
        run(code, max_call_depth=10000, max_steps=100000)


def test_chained_assignment():
    steps = run(
        "int main() {\n"
        "    int a, b;\n"
        "    float f;\n"
        "    a = b = 5;\n"
        "    a = f = 2.5;\n"
        "}\n"
    )
    assert steps[2].explanation == "a = b = 5"
    assert steps[2].variables == {"a": 5, "b": 5, "f": 0.0}
    assert steps[-1].variables == {"a": 2, "b": 5, "f": 2.5}


def test_printf_conversions():
    assert format_printf("%5.2f|%c|%s|%%\n", [3.14159, 65, "hi"]) == " 3.14|A|hi|%"
    assert format_printf("%-3d|%03d|%x", [7, 7, 255]) == "7  |007|ff"
    assert format_printf("%d and %d", [1]) == "1 and 0"

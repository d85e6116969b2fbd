import pytest

from config import TraceLimits
from script_tracer import ScriptTracer
from trace_types import StepBudgetExceeded


def run(code, **limits):
    return ScriptTracer(TraceLimits(**limits)).run(code)


def kinds(steps):
    return [step.kind for step in steps]


def frame_names(step):
    return [frame.function_name for frame in step.call_stack]


def assert_stack_is_lifo(steps):
    """Between consecutive steps the stack only grows or shrinks at its top."""
    previous = []
    for step in steps:
        current = frame_names(step)
        shorter = min(len(previous), len(current))
        assert previous[:shorter] == current[:shorter]
        assert abs(len(current) - len(previous)) <= 1
        previous = current


def test_if_else_branching():
    steps = run(
        "x = 5\n"
        "y = 10\n"
        "if x > y:\n"
        "    print(\"x is bigger\")\n"
        "else:\n"
        "    print(\"y is bigger\")\n"
        "print(\"done\")\n"
    )
    assert kinds(steps) == ["assignment", "assignment", "condition_false", "print", "print"]
    assert [step.line for step in steps] == [0, 1, 2, 5, 6]
    assert steps[2].explanation == "x > y → False"
    assert steps[-1].output == ["y is bigger", "done"]
    assert steps[-1].variables == {"x": 5, "y": 10}


def test_elif_chain_runs_one_branch():
    steps = run(
        "score = 75\n"
        "if score >= 90:\n"
        "    grade = \"A\"\n"
        "elif score >= 70:\n"
        "    grade = \"B\"\n"
        "else:\n"
        "    grade = \"C\"\n"
        "print(grade)\n"
    )
    assert kinds(steps) == ["assignment", "condition_false", "condition_true", "assignment", "print"]
    assert steps[-1].output == ["B"]


def test_recursive_factorial():
    steps = run(
        "def factorial(n):\n"
        "    if n <= 1:\n"
        "        return 1\n"
        "    return n * factorial(n - 1)\n"
        "\n"
        "result = factorial(5)\n"
        "print(result)\n"
    )
    assert steps[0].kind == "define"
    assert steps[0].explanation == "Define function factorial"

    calls = [step for step in steps if step.kind == "function_call"]
    assert [len(step.call_stack) for step in calls] == [1, 2, 3, 4, 5]
    assert [step.variables for step in calls] == [{"n": n} for n in (5, 4, 3, 2, 1)]
    assert all(step.line == 0 for step in calls)
    assert calls[0].call_stack[0].args == {"n": 5}

    returns = [step.explanation for step in steps if step.kind == "function_return"]
    assert returns == ["Return 1", "Return 2", "Return 6", "Return 24", "Return 120"]

    assert max(len(step.call_stack) for step in steps) == 5
    assert steps[-1].call_stack == []
    assert steps[-1].variables == {"result": 120}
    assert steps[-1].output == ["120"]
    assert_stack_is_lifo(steps)


def test_bubble_sort_snapshots_are_independent():
    steps = run(
        "arr = [5, 1, 4, 2]\n"
        "n = len(arr)\n"
        "for i in range(n):\n"
        "    for j in range(n - i - 1):\n"
        "        if arr[j] > arr[j + 1]:\n"
        "            arr[j], arr[j + 1] = arr[j + 1], arr[j]\n"
        "print(arr)\n"
    )
    assert steps[0].variables == {"arr": [5, 1, 4, 2]}
    assert steps[-1].variables["arr"] == [1, 2, 4, 5]
    assert steps[-1].output == ["[1, 2, 4, 5]"]
    swaps = [step for step in steps if step.kind == "assignment" and step.line == 5]
    assert swaps[0].explanation == "arr[j], arr[j + 1] = 1, 5"
    assert swaps[0].variables["arr"] == [1, 5, 4, 2]


def test_runaway_loop_is_truncated():
    steps = run("x = 0\nwhile True:\n    x += 1\n")
    assert len(steps) == 402
    assert steps[1].kind == "loop_start"
    assert steps[2].explanation == "True → True (iteration 1)"
    assert steps[-1].variables == {"x": 200}
    assert "condition_false" not in kinds(steps)


def test_while_loop_records_exit():
    steps = run("i = 0\nwhile i < 3:\n    i += 1\nprint(i)\n")
    assert kinds(steps) == (
        ["assignment", "loop_start"]
        + ["loop_check", "assignment"] * 3
        + ["condition_false", "print"]
    )
    assert steps[2].explanation == "i < 3 → True (iteration 1)"
    assert steps[3].explanation == "i += 1 → 1"
    assert steps[-2].explanation == "i < 3 → False, loop ended"


def test_for_loop_over_list():
    steps = run(
        "names = [\"ann\", \"bob\"]\n"
        "for name in names:\n"
        "    print(name.upper())\n"
    )
    assert kinds(steps) == ["assignment", "loop_start", "loop_check", "print", "loop_check", "print"]
    assert steps[1].explanation == "For loop: name in names"
    assert steps[2].explanation == "name = 'ann' (iteration 1)"
    assert steps[-1].output == ["ANN", "BOB"]


def test_list_methods_and_tuple_swap():
    steps = run(
        "items = []\n"
        "items.append(3)\n"
        "items.append(1)\n"
        "last = items.pop()\n"
        "a, b = 1, 2\n"
        "a, b = b, a\n"
    )
    assert steps[1].kind == "expression"
    assert steps[1].explanation == "items.append(3)"
    assert steps[3].variables["items"] == [3]
    assert steps[3].variables["last"] == 1
    assert steps[-1].explanation == "a, b = 2, 1"
    assert (steps[-1].variables["a"], steps[-1].variables["b"]) == (2, 1)


def test_implicit_none_return_and_isolated_scope():
    steps = run(
        "x = 1\n"
        "def greet(name):\n"
        "    print(\"hi \" + name)\n"
        "\n"
        "r = greet(\"bo\")\n"
    )
    printed = next(step for step in steps if step.kind == "print")
    assert printed.variables == {"name": "bo"}
    assert frame_names(printed) == ["greet"]
    assert steps[-1].explanation == "r = None"
    assert steps[-1].variables == {"x": 1, "r": None}


def test_missing_arguments_bind_none():
    steps = run("def show(a, b):\n    return b\n\nv = show(1)\n")
    call = next(step for step in steps if step.kind == "function_call")
    assert call.variables == {"a": 1, "b": None}
    assert steps[-1].variables["v"] is None


def test_failed_expression_is_recovered():
    steps = run("y = missing + 1\nprint(y)\nz = 2\n")
    assert steps[0].variables == {"y": None}
    assert steps[1].output == ["undefined"]
    assert steps[-1].variables["z"] == 2


def test_top_level_return_ends_run():
    steps = run("a = 1\nreturn\na = 2\n")
    assert kinds(steps) == ["assignment", "function_return"]


def test_step_budget():
    with pytest.raises(StepBudgetExceeded, match="Max steps exceeded"):
        run("x = 0\n" + "x += 1\n" * 60, max_steps=50)


def test_loop_stops_before_step_budget_runs_out():
    steps = run("x = 0\ny = 0\nwhile True:\n    x += 1\n    y += 1\nprint(x)\n")
    assert len(steps) <= 500
    assert steps[-1].kind == "print"
    x = steps[-1].variables["x"]
    assert 100 < x < 200
    assert steps[-1].output == [str(x)]


def test_small_budget_truncates_loop_quietly():
    steps = run("x = 0\nwhile True:\n    x += 1\n", max_steps=50)
    assert len(steps) <= 50
    assert steps[-1].kind == "assignment"


def test_for_loop_iteration_cap():
    steps = run("total = 0\nfor k in range(10):\n    total = k\n", max_loop_iterations=3)
    assert kinds(steps).count("loop_check") == 3
    assert steps[-1].variables == {"total": 2, "k": 2}


def test_deep_recursion_inside_nested_blocks():
    code = (
        "def f(n):\n"
        "    if n > 0:\n"
        "        while True:\n"
        "            for k in [1]:\n"
        "                if k == 1:\n"
        "                    return f(n - 1) + 1\n"
        "    return 0\n"
        "\n"
        "print(f(400))\n"
    )
    with pytest.raises(StepBudgetExceeded, match="call depth"):
        run(code, max_call_depth=10000, max_steps=100000)


def test_chained_assignment():
    steps = run("a = b = 0\nb += 1\n")
    assert steps[0].explanation == "a = b = 0"
    assert steps[0].variables == {"a": 0, "b": 0}
    assert steps[-1].variables == {"a": 0, "b": 1}


def test_power_assignment():
    steps = run("x = 3\nx **= 2\n")
    assert steps[-1].explanation == "x **= 2 → 9"
    assert steps[-1].variables == {"x": 9}


def test_print_keywords():
    steps = run('print("a", end="")\nprint("b")\nprint(1, 2, sep="-")\n')
    assert kinds(steps) == ["print"] * 3
    assert steps[0].output == ["a"]
    assert steps[1].output == ["ab"]
    assert steps[-1].output == ["ab", "1-2"]


def test_unbounded_recursion_hits_call_depth():
    with pytest.raises(StepBudgetExceeded, match="call depth"):
        run("def f(n):\n    return f(n + 1)\n\nf(0)\n")

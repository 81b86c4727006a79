from evalplanner.prompts import check_prompts, is_valid_step, load_prompt, reload_prompts


def test_step_names_are_restricted():
    assert is_valid_step("prompt1")
    assert is_valid_step("report_template")
    assert not is_valid_step("../secrets")
    assert not is_valid_step("")


def test_load_prompt_caches_until_reload(tmp_path):
    (tmp_path / "prompt2.md").write_text("first", encoding="utf-8")
    reload_prompts()

    assert load_prompt(str(tmp_path), "prompt2") == "first"
    (tmp_path / "prompt2.md").write_text("second", encoding="utf-8")
    assert load_prompt(str(tmp_path), "prompt2") == "first"

    assert reload_prompts() >= 1
    assert load_prompt(str(tmp_path), "prompt2") == "second"


def test_missing_or_invalid_prompt(tmp_path):
    assert load_prompt(str(tmp_path), "prompt1") is None
    assert load_prompt(str(tmp_path), "../etc/passwd") is None


def test_check_prompts_reports_lengths(tmp_path):
    (tmp_path / "prompt1.md").write_text("abc", encoding="utf-8")
    reload_prompts()

    assert check_prompts(str(tmp_path)) == {
        "prompt1": 3,
        "prompt2": None,
        "report_template": None,
    }

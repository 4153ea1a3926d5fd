from inference.parser import ToolCall, coerce_value, parse_tool_calls, tokenize


def test_call_with_coerced_values():
    calls = parse_tool_calls("call:increase_cooldown{habit_id:gym,minutes:45}")
    assert calls == [ToolCall("increase_cooldown", {"habit_id": "gym", "minutes": 45})]


def test_values_may_contain_commas_and_colons():
    text = "call:send_nudge{habit_id:gym,tone:playful,message:hey, you've been scrolling: go lift}"
    (call,) = parse_tool_calls(text)
    assert call.name == "send_nudge"
    assert call.arguments["message"] == "hey, you've been scrolling: go lift"
    assert call.arguments["tone"] == "playful"


def test_quoted_values_are_not_coerced():
    (call,) = parse_tool_calls('call:update_habit_state{habit_id:"gym",field:streak_count,value:"12"}')
    assert call.arguments == {"habit_id": "gym", "field": "streak_count", "value": "12"}
    (call,) = parse_tool_calls("call:send_nudge{habit_id:<escape>gym<escape>,tone:gentle,message:<escape>a, b: c<escape>}")
    assert call.arguments["message"] == "a, b: c"


def test_coercion_precedence():
    assert coerce_value("12") == 12
    assert coerce_value(" 12.5 ") == 12.5
    assert coerce_value("-3") == -3
    assert coerce_value("true") is True
    assert coerce_value("false") is False
    assert coerce_value("True") == "True"
    assert coerce_value("inf") == "inf"
    assert coerce_value("gym") == "gym"


def test_calls_inside_prose_and_multiple_calls():
    text = "sure thing! call:delay_nudge{habit_id:reading,reason:busy} then call:analyze_pattern{habit_id:gym,pattern_type:best_time}"
    calls = parse_tool_calls(text)
    assert [c.name for c in calls] == ["delay_nudge", "analyze_pattern"]
    assert calls[0].arguments == {"habit_id": "reading", "reason": "busy"}


def test_calls_without_arguments_are_dropped():
    assert parse_tool_calls("call:get_shopping_list{}") == []


def test_json_object_is_accepted():
    calls = parse_tool_calls('{"name": "delay_nudge", "arguments": {"habit_id": "gym", "reason": "meeting"}}')
    assert calls == [ToolCall("delay_nudge", {"habit_id": "gym", "reason": "meeting"})]
    fenced = '```json\n{"name": "delay_nudge", "arguments": {"habit_id": "gym", "reason": "x"}}\n```'
    assert parse_tool_calls(fenced)[0].name == "delay_nudge"


def test_malformed_input_never_raises():
    for text in ["", "call:", "call:x{", "call:x{a:1", "call:{a:1}", "{not json", "call:x{a:1,}", '{"name": 3}', "}}}{{{"]:
        assert isinstance(parse_tool_calls(text), list)
    assert parse_tool_calls("call:x{a:1,}") == [ToolCall("x", {"a": 1})]


def test_tokenizer_kinds():
    kinds = [t.kind for t in tokenize('call:x{a:"b"}') if t.kind != "WS"]
    assert kinds == ["NAME", "COLON", "NAME", "LBRACE", "NAME", "COLON", "QUOTED", "RBRACE"]

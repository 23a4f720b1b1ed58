from bizagent.formatter import GENERIC_REPLY, MAX_LIST_ITEMS, format_tool_result


def test_unknown_tool_or_empty_data_is_generic():
    assert format_tool_result("nope", {"a": 1}) == GENERIC_REPLY
    assert format_tool_result("free_slots", {}) == GENERIC_REPLY
    assert format_tool_result("free_slots", None) == GENERIC_REPLY


def test_malformed_data_falls_back_instead_of_raising():
    assert format_tool_result("who_working", {"rows": [{"no_name": True}], "date": "2025-05-02"}) == GENERIC_REPLY


def test_free_slots_master_required_lists_masters():
    text = format_tool_result("free_slots", {"master_required": True, "masters": ["Олена", "Ірина"]})
    assert "вкажіть майстра" in text
    assert "Олена, Ірина" in text


def test_free_slots_text():
    data = {"master_name": "Олена", "date": "2025-05-02", "duration_minutes": 60, "working": True, "slots": ["09:00", "11:00"]}
    assert format_tool_result("free_slots", data) == "Вільні слоти Олена 02.05 (60 хв): 09:00, 11:00."

    data.update(slots=[])
    assert "вільних слотів на 60 хв немає" in format_tool_result("free_slots", data)

    data.update(working=False)
    assert format_tool_result("free_slots", data) == "Олена 02.05 не працює."


def test_kpi_text():
    data = {
        "range": {"days": 7},
        "kpi": {"appointments_total": 4, "appointments_done": 2, "cancelled": 1, "cancel_rate": 0.25,
                "new_clients": 3, "revenue": 1500, "payments_count": 2},
    }
    text = format_tool_result("analytics_kpi", data)
    assert text.startswith("За 7 дн.: записів 4")
    assert "(25%)" in text
    assert "Виручка 1500 грн" in text


def test_long_lists_are_cut():
    rows = [{"id": str(i), "text": f"нотатка {i}", "completed": False} for i in range(MAX_LIST_ITEMS + 3)]
    text = format_tool_result("notes_list", {"rows": rows, "date": None})
    assert "нотатка 9" in text
    assert "нотатка 10" not in text
    assert text.endswith("…і ще 3")


def test_client_by_phone_texts():
    assert "Невірний номер" in format_tool_result("client_by_phone", {"phone": "12", "valid": False, "client": None})
    assert format_tool_result("client_by_phone", {"phone_last4": "4567", "valid": True, "client": None}) == (
        "Клієнта з номером …4567 немає в базі."
    )


def test_formatting_is_deterministic():
    data = {"date": "2025-05-02", "rows": [{"master_name": "Олена", "start": "09:00", "end": "18:00"}]}
    assert format_tool_result("who_working", data) == format_tool_result("who_working", dict(data))
    assert format_tool_result("who_working", data) == "02.05 працюють: Олена (09:00-18:00)."

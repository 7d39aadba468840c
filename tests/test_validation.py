from teleconsult.validation import (
    is_positive_minutes,
    normalize_email,
    normalize_room_name,
    parse_client_emails,
    validate_display_name,
    validate_email,
    validate_host_name,
    validate_room_name,
)


class TestNormalizeRoomName:
    def test_lowercases_and_trims(self):
        assert normalize_room_name("  Ada-Checkup ") == "ada-checkup"

    def test_variants_share_a_key(self):
        assert normalize_room_name("ADA-checkup") == normalize_room_name(" ada-Checkup")

    def test_empty(self):
        assert normalize_room_name("") == ""

    def test_none(self):
        assert normalize_room_name(None) == ""


class TestValidateEmail:
    def test_valid_email_is_normalized(self):
        assert validate_email("  ALICE@Example.com ") == "alice@example.com"

    def test_rejects_missing_at(self):
        assert validate_email("alice.example.com") == ""

    def test_rejects_missing_domain_dot(self):
        assert validate_email("alice@example") == ""

    def test_rejects_inner_whitespace(self):
        assert validate_email("ali ce@example.com") == ""

    def test_rejects_none(self):
        assert validate_email(None) == ""

    def test_normalize_email_keeps_invalid_text(self):
        assert normalize_email(" Not-An-Email ") == "not-an-email"


class TestValidateRoomName:
    def test_valid_name_keeps_display_case(self):
        assert validate_room_name(" Ada_Checkup-1 ") == "Ada_Checkup-1"

    def test_rejects_short_name(self):
        assert validate_room_name("ab") == ""

    def test_rejects_spaces_inside(self):
        assert validate_room_name("ada checkup") == ""

    def test_rejects_slashes(self):
        assert validate_room_name("ada/checkup") == ""


class TestValidateHostName:
    def test_valid(self):
        assert validate_host_name(" Dr. Ada ") == "Dr. Ada"

    def test_rejects_single_character(self):
        assert validate_host_name("A") == ""

    def test_rejects_blank(self):
        assert validate_host_name("   ") == ""


class TestValidateDisplayName:
    def test_collapses_whitespace(self):
        assert validate_display_name("  Alice   Smith ") == "Alice Smith"

    def test_rejects_short(self):
        assert validate_display_name("A") == ""

    def test_rejects_sentinels(self):
        assert validate_display_name("undefined") == ""
        assert validate_display_name("N/A") == ""

    def test_rejects_template_variables(self):
        assert validate_display_name("{{name}}") == ""


class TestParseClientEmails:
    def test_single(self):
        assert parse_client_emails("alice@example.com") == ["alice@example.com"]

    def test_multiple_trimmed_and_lowercased(self):
        assert parse_client_emails(" Alice@Example.com , BOB@example.com") == [
            "alice@example.com",
            "bob@example.com",
        ]

    def test_duplicates_collapse(self):
        assert parse_client_emails("alice@example.com,ALICE@example.com") == ["alice@example.com"]

    def test_one_bad_entry_rejects_all(self):
        assert parse_client_emails("alice@example.com,not-an-email") == []

    def test_trailing_comma_rejected(self):
        assert parse_client_emails("alice@example.com,") == []

    def test_empty(self):
        assert parse_client_emails("") == []
        assert parse_client_emails("   ") == []


class TestIsPositiveMinutes:
    def test_positive_int(self):
        assert is_positive_minutes(15)
        assert is_positive_minutes(7)

    def test_zero_and_negative(self):
        assert not is_positive_minutes(0)
        assert not is_positive_minutes(-15)

    def test_rejects_bool_and_other_types(self):
        assert not is_positive_minutes(True)
        assert not is_positive_minutes(15.0)
        assert not is_positive_minutes("15")

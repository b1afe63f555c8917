from salesops.engine import statuses as st
from salesops.engine.attribution import (
    AliasSnapshot,
    extract_utm_fields,
    flatten_responses,
    is_junk_setter_name,
    match_source,
    normalize_handle,
    resolve_attribution,
    resolve_closer_display_name,
    resolve_handle,
    resolve_setter_name,
    unwrap_answer,
)
from salesops.engine.providers.base import NormalizedBookingEvent


def _event(**fields):
    return NormalizedBookingEvent(platform=st.CALCOM, kind=st.KIND_CREATED, raw_trigger="BOOKING_CREATED", native_id="b1", **fields)


SNAPSHOT = AliasSnapshot(
    setter_aliases=(("jane_doe_official", "Jane D."), ("mike", "Mike R.")),
    closer_by_email={"closer@acme.test": "Casey"},
    closer_by_name={"casey closer": "Casey"},
    sources=(("src-ig", "Instagram"), ("src-yt", "YouTube")),
)


def test_unwrap_answer():
    assert unwrap_answer({"label": "Setter", "value": "Mike", "isHidden": False}) == "Mike"
    assert unwrap_answer("plain") == "plain"
    assert unwrap_answer({"label": "no value key"}) == {"label": "no value key"}


def test_flatten_responses_precedence():
    flat = flatten_responses(
        {"setter": {"value": "From Responses"}},
        {"setter": {"value": "From User Fields"}, "company": {"value": "Acme"}},
        {"budget": "5k", "company": "Other"},
    )
    assert flat == {"setter": "From Responses", "company": "Acme", "budget": "5k"}


def test_extract_utm_fields_case_insensitive_and_responses_win():
    utm = extract_utm_fields(
        {"UTM_Source": "instagram", "name": "x"},
        {"utm_source": "facebook", "utm_campaign": "spring", "utm_empty": ""},
    )
    assert utm == {"utm_source": "instagram", "utm_campaign": "spring"}


def test_explicit_setter_in_responses():
    attribution = resolve_attribution(_event(responses={"utm_setter": {"value": "Mike"}}), SNAPSHOT)
    assert attribution.setter_name == "Mike"
    assert attribution.setter_resolution == "responses"


def test_setter_chain_order():
    event = _event(
        user_fields={"setter": {"value": "User Field Setter"}},
        booking_fields={"setter-name": "Booking Field Setter"},
        metadata={"setter": "Metadata Setter"},
    )
    attribution = resolve_attribution(event, SNAPSHOT)
    assert attribution.setter_name == "User Field Setter"
    assert attribution.setter_resolution == "user_fields"

    attribution = resolve_attribution(_event(metadata={"setter": "Metadata Setter"}, setter_hint="Hint"), SNAPSHOT)
    assert attribution.setter_name == "Metadata Setter"


def test_setter_hint_before_handle_lookup():
    event = _event(responses={"IG Handle": "@jane_doe"}, setter_hint="Referral Rob")
    attribution = resolve_attribution(event, SNAPSHOT)
    assert attribution.setter_name == "Referral Rob"
    assert attribution.setter_resolution == "hint"


def test_instagram_handle_partial_match():
    attribution = resolve_attribution(_event(responses={"IGHANDLE": {"value": "@Jane_Doe "}}), SNAPSHOT)
    assert attribution.setter_name == "Jane D."
    assert attribution.setter_resolution == "handle"
    assert attribution.handle == "jane_doe"


def test_handle_matching_order():
    snapshot = AliasSnapshot(setter_aliases=(("jane_doe_official", "Partial"), ("jane_doe", "Exact")))
    assert resolve_handle("jane_doe", snapshot) == "Exact"
    assert resolve_handle("mike_sales_team", SNAPSHOT) == "Mike R."
    assert resolve_handle("nobody", SNAPSHOT) is None
    assert resolve_handle(None, SNAPSHOT) is None


def test_unmatched_handle_leaves_setter_empty():
    attribution = resolve_attribution(_event(responses={"ig_handle": "@someone_else"}), SNAPSHOT)
    assert attribution.setter_name is None
    assert attribution.setter_resolution == "none"


def test_malformed_fields_degrade():
    event = _event(responses={"setter": {"value": None}, "utm_source": {"value": ["x"]}}, metadata={"utm_medium": 7})
    attribution = resolve_attribution(event, SNAPSHOT)
    assert attribution.setter_name is None
    assert attribution.utm_fields["utm_medium"] == 7


def test_source_value_priority():
    assert resolve_attribution(_event(source_hint="tiktok", responses={"utm_source": "ig"}), SNAPSHOT).source_value == "tiktok"
    assert resolve_attribution(_event(metadata={"utm_medium": "paid"}), SNAPSHOT).source_value == "paid"
    assert resolve_attribution(_event(responses={"source": "Podcast"}), SNAPSHOT).source_value == "Podcast"


def test_normalize_handle():
    assert normalize_handle(" @@Jane ") == "jane"
    assert normalize_handle("@") is None
    assert normalize_handle(None) is None


def test_junk_setter_names():
    for junk in ("user_8f7a6", "ab", "12345", "utm_setter", "https://x.com/a", "", None):
        assert is_junk_setter_name(junk)
    assert not is_junk_setter_name("Mike")


def test_read_time_setter_normalization():
    snapshot = AliasSnapshot(setter_aliases=(("mike r", "Mike R."), ("@janedoe", "Jane D.")))
    assert resolve_setter_name("MIKE R", snapshot) == "Mike R."
    assert resolve_setter_name("jane doe", snapshot) == "Jane D."
    assert resolve_setter_name("  Unknown Person ", snapshot) == "Unknown Person"
    assert resolve_setter_name("user_abc", snapshot) is None


def test_closer_display_name_email_then_name():
    assert resolve_closer_display_name("CLOSER@acme.test", "Whoever", SNAPSHOT) == "Casey"
    assert resolve_closer_display_name(None, "Casey Closer", SNAPSHOT) == "Casey"
    assert resolve_closer_display_name("other@acme.test", "Raw Name", SNAPSHOT) == "Raw Name"


def test_match_source():
    assert match_source("instagram", SNAPSHOT) == "src-ig"
    assert match_source("YouTube Ads", SNAPSHOT) == "src-yt"
    assert match_source("newsletter", SNAPSHOT) is None
    assert match_source(None, SNAPSHOT) is None

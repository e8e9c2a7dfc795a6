from app.services.extraction import (
    PageSnapshot,
    extract_counts,
    extract_country,
    extract_emails,
    extract_outbound_links,
    obscure_email,
    parse_count,
)


def main() -> None:
    assert parse_count("1.2M") == 1_200_000
    assert parse_count("12,345") == 12345
    assert parse_count("3.4K subscribers") == 3400
    assert parse_count("") is None

    snapshot = PageSnapshot(
        url="https://www.youtube.com/@chef/about",
        text="Chef Jane\n1.2M subscribers\n340 videos\n56,789,012 views\nUnited Kingdom\nJoined Mar 3, 2015",
    )
    counts = extract_counts(snapshot)
    assert counts["subscriber_count"] == 1_200_000, counts
    assert counts["video_count"] == 340, counts
    assert counts["view_count"] == 56_789_012, counts
    assert extract_country(snapshot) == "United Kingdom"

    emails = extract_emails("Business: jane@chef.com or jane [at] chefmail [dot] com, junk: icon@2x.png")
    assert emails == ["jane@chef.com", "jane@chefmail.com"], emails
    assert obscure_email("jane@chef.com") == "j**e@chef.com"

    links = extract_outbound_links(
        "Follow me https://instagram.com/chefjane",
        links=["https://www.youtube.com/redirect?q=https%3A%2F%2Fchef.com%2F"],
    )
    assert links["instagram"] == "https://instagram.com/chefjane", links
    assert links["website"] == "https://chef.com/", links

    print("OK")
    print(f"counts: {counts}")
    print(f"emails: {[obscure_email(e) for e in emails]}")
    print(f"links: {links}")


if __name__ == "__main__":
    main()

from __future__ import annotations

from helpers import run_rule

from perfsentinel.engine.types import Severity
from perfsentinel.rules.database import NPlusOneQueryRule


def test_sqlx_query_in_loop_reports_builder_and_fetch() -> None:
    diagnostics = run_rule(
        NPlusOneQueryRule(),
        """\
async fn load_users(pool: &PgPool, ids: Vec<i64>) -> Vec<User> {
    let mut users = Vec::with_capacity(ids.len());
    for id in ids {
        let user = sqlx::query_as::<_, User>("SELECT * FROM users WHERE id = $1")
            .bind(id)
            .fetch_one(pool)
            .await
            .unwrap();
        users.push(user);
    }
    users
}
""",
    )

    assert [(d.line, d.severity) for d in diagnostics] == [(4, Severity.ERROR), (6, Severity.ERROR)]
    assert diagnostics[0].message.startswith("Database query `sqlx::query_as` inside loop (N+1 query pattern).")
    assert "`fetch_one`" in diagnostics[1].message


def test_query_outside_loop_is_fine() -> None:
    source = """\
async fn load_all(pool: &PgPool) -> Vec<User> {
    sqlx::query_as::<_, User>("SELECT * FROM users").fetch_all(pool).await.unwrap()
}
"""
    assert run_rule(NPlusOneQueryRule(), source) == []


def test_std_collection_methods_sharing_query_names_are_ignored() -> None:
    source = """\
fn dedupe(groups: Vec<Vec<u32>>) -> HashMap<u32, u32> {
    let mut seen = HashMap::with_capacity(16);
    for g in groups {
        if let Some(first) = g.first() {
            seen.insert(*first, 1);
        }
    }
    seen
}
"""
    assert run_rule(NPlusOneQueryRule(), source) == []


def test_ambiguous_method_with_connection_argument_is_reported() -> None:
    diagnostics = run_rule(
        NPlusOneQueryRule(),
        """\
fn publish(conn: &mut PgConnection, ids: &[i32]) {
    for id in ids {
        diesel::update(posts.find(id)).set(published.eq(true)).execute(conn).unwrap();
    }
}
""",
    )

    patterns = [d.message.split("`")[1] for d in diagnostics]
    assert patterns == ["diesel::update", "execute"]
    assert all(d.line == 3 for d in diagnostics)


def test_seaorm_find_by_id_in_loop() -> None:
    diagnostics = run_rule(
        NPlusOneQueryRule(),
        """\
async fn load(db: &DatabaseConnection, ids: Vec<i32>) {
    for id in ids {
        let cake = Cake::find_by_id(id).one(db).await;
    }
}
""",
    )

    patterns = [d.message.split("`")[1] for d in diagnostics]
    assert "one" in patterns


def test_long_receiver_chain_is_followed_to_the_table() -> None:
    chain = ".map(id)" * 2000
    source = f"fn save_all(users: Users, ids: &[i64]) {{\n    for id in ids {{\n        users{chain}.save();\n    }}\n}}\n"

    (d,) = run_rule(NPlusOneQueryRule(), source)
    assert d.line == 3
    assert "`save`" in d.message

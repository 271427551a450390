from models import db
from models.user import User


def test_create_provider_and_attach_account(app):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["create-user", "New.Provider@Example.com", "s3cret-pass", "--role", "PROVIDER"])
    assert "created with roles PROVIDER" in result.output

    user = User.query.filter_by(email="new.provider@example.com").one()
    assert [r.name for r in user.roles] == ["PROVIDER"]

    result = runner.invoke(args=["set-stripe-account", "new.provider@example.com", "acct_abc"])
    assert "acct_abc" in result.output
    assert User.query.filter_by(email="new.provider@example.com").one().stripe_account_id == "acct_abc"


def test_account_id_must_be_connect_account(app, provider):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["set-stripe-account", provider.email, "cus_123"])
    assert "must look like acct_" in result.output
    assert db.session.get(User, provider.id).stripe_account_id == "acct_provider123"

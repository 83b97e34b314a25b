from pats import create_app, db
from pats.models import ClosedResult, Game, GradeRecord, PATSSession, Pick, UserLedgerEntry

app = create_app()


@app.shell_context_processor
def make_shell_context():
    return {
        "db": db,
        "PATSSession": PATSSession,
        "Game": Game,
        "Pick": Pick,
        "UserLedgerEntry": UserLedgerEntry,
        "GradeRecord": GradeRecord,
        "ClosedResult": ClosedResult,
    }


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=app.config.get("DEBUG", False))

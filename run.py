import os

from awning_calc import create_app

app = create_app()

if __name__ == "__main__":
    # Development server; FLASK_DEBUG=0 turns the reloader off
    app.run(
        debug=os.getenv("FLASK_DEBUG", "1") == "1",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8080"))
    )

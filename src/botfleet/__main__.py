from botfleet.cli.app import app

app(prog_name="botfleet")

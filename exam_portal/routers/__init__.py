"""HTTP routers for the exam portal."""
